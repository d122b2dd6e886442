"""
ildasm runner for the external IL disassembly stage.

Wraps the IL Disassembler command line tool. The tool's exit status is not
enforced: whatever it writes is kept until a later stage replaces it.
"""

import logging
import platform
import shutil
import subprocess  # nosec B404 - Required for ildasm execution
import time
from pathlib import Path
from typing import Any

from msil_comparator.engines.base import DisassemblyBackend
from msil_comparator.utils.config import get_config, get_config_int
from msil_comparator.utils.structured_errors import (
    ToolNotFoundError,
    create_tool_not_found_error,
)

logger = logging.getLogger(__name__)

ILDASM = "ildasm.exe"


class IldasmRunner(DisassemblyBackend):
    """
    External process backend around ildasm.

    The tool location is resolved once by prepare(). Lookup order:
    1. Explicit path (constructor argument or MSIL_COMPARATOR_ILDASM)
    2. ildasm.exe in the current working directory
    3. ildasm / ildasm.exe in PATH
    """

    name = "ildasm"
    rank = 10

    def __init__(
        self,
        ildasm_path: str | Path | None = None,
        timeout: int | None = None,
    ):
        """
        Initialize ildasm runner.

        Args:
            ildasm_path: Explicit tool location. Defaults to config, then
                         the working directory, then PATH.
            timeout: Seconds to wait for one run. None or 0 waits forever.
        """
        self.system = platform.system()

        configured = ildasm_path or get_config("MSIL_COMPARATOR_ILDASM")
        self.configured_path: Path | None = Path(configured) if configured else None

        if timeout is None:
            timeout = get_config_int("MSIL_COMPARATOR_ILDASM_TIMEOUT", 0)
        self.timeout = timeout or None

        self._ildasm_path: Path | None = None

    def _candidate_paths(self) -> list[Path]:
        if self.configured_path is not None:
            return [self.configured_path]
        return [Path.cwd() / ILDASM]

    def _find_ildasm(self) -> Path | None:
        """
        Find the ildasm executable.

        Returns:
            Path to ildasm or None if not found
        """
        if self._ildasm_path:
            return self._ildasm_path

        for path in self._candidate_paths():
            if path.is_file():
                self._ildasm_path = path
                logger.info(f"Found ildasm at: {path}")
                return path

        # An explicit path is authoritative
        if self.configured_path is not None:
            logger.warning(f"Configured ildasm not found: {self.configured_path}")
            return None

        for tool in ("ildasm", ILDASM):
            found = shutil.which(tool)
            if found:
                self._ildasm_path = Path(found)
                logger.info(f"Found ildasm in PATH: {found}")
                return self._ildasm_path

        logger.warning(f"{ILDASM} not found in {Path.cwd()} or PATH")
        return None

    @property
    def ildasm_path(self) -> Path | None:
        return self._ildasm_path

    def is_available(self) -> bool:
        """Check if ildasm is available."""
        return self._find_ildasm() is not None

    def prepare(self) -> None:
        """
        Resolve the tool location before any file is processed.

        Raises:
            ToolNotFoundError: If ildasm cannot be found
        """
        if self._find_ildasm() is None:
            searched = [str(p) for p in self._candidate_paths()]
            if self.configured_path is None:
                searched.append("PATH")
            raise ToolNotFoundError(create_tool_not_found_error(ILDASM, searched))

    def build_command(self, source_path: Path, output_path: Path) -> list[str]:
        """Build the ildasm argument list for one assembly."""
        return [
            str(self._ildasm_path),
            str(source_path),
            "/all",
            f"/out={output_path}",
        ]

    def disassemble(self, source_path: Path, output_path: Path) -> None:
        """
        Run ildasm on one assembly.

        Args:
            source_path: Path to a validated assembly
            output_path: IL file for ildasm to write

        Raises:
            ToolNotFoundError: If ildasm is missing
        """
        if self._ildasm_path is None:
            self.prepare()
        elif not self._ildasm_path.is_file():
            # Removed after preflight
            raise ToolNotFoundError(
                create_tool_not_found_error(ILDASM, [str(self._ildasm_path)])
            )

        command = self.build_command(source_path, output_path)
        logger.debug(f"Running: {' '.join(command)}")

        start_time = time.time()
        try:
            result = subprocess.run(  # nosec B603 - argument list, no shell
                command,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            logger.warning(
                f"ildasm timed out after {self.timeout}s on {source_path.name}; keeping partial output"
            )
            return
        except FileNotFoundError:
            raise ToolNotFoundError(
                create_tool_not_found_error(ILDASM, [str(self._ildasm_path)])
            )
        except OSError as e:
            # Exec format errors and the like are ignored like a failing exit
            logger.warning(f"ildasm could not be started for {source_path.name}: {e}")
            return

        elapsed = time.time() - start_time

        if result.returncode != 0:
            detail = (result.stderr or result.stdout or "").strip()
            logger.warning(
                f"ildasm exited with {result.returncode} for {source_path.name}: {detail[:200]}"
            )
        else:
            logger.debug(f"ildasm finished {source_path.name} in {elapsed:.2f}s")

    def get_version(self) -> str | None:
        """Get the ildasm banner line."""
        ildasm = self._find_ildasm()
        if not ildasm:
            return None

        try:
            result = subprocess.run(  # nosec B603
                [str(ildasm), "/?"],
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=10,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.error(f"Failed to get ildasm version: {e}")
            return None

        output = (result.stdout or result.stderr or "").strip()
        return output.splitlines()[0] if output else None

    def diagnose(self) -> dict[str, Any]:
        """
        Run diagnostic checks on the ildasm installation.

        Returns:
            Diagnostic information dict
        """
        diag: dict[str, Any] = {
            "backend": self.name,
            "platform": self.system,
            "configured_path": str(self.configured_path) if self.configured_path else None,
            "ildasm_found": False,
            "ildasm_path": None,
            "ildasm_version": None,
            "timeout": self.timeout,
        }

        ildasm = self._find_ildasm()
        if ildasm:
            diag["ildasm_found"] = True
            diag["ildasm_path"] = str(ildasm)
            diag["ildasm_version"] = self.get_version()

        return diag
