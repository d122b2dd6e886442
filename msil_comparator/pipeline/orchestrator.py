"""
Pipeline driver: discover, validate, resolve and disassemble.

Each input specifier is handled in order and in isolation. Files found under
it are validated, given an output path and passed through every stage in
rank order, so the external tool always runs before the in-process writer.
"""

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path

from msil_comparator.engines.base import DisassemblyBackend, order_stages
from msil_comparator.engines.dotnet.validator import is_assembly
from msil_comparator.pipeline.paths import (
    CandidateFile,
    InputKind,
    InputSpecifier,
    ensure_parent,
    resolve_output,
)
from msil_comparator.utils.structured_errors import ToolNotFoundError

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_PATTERN = "*"


@dataclass(frozen=True)
class DispatchRecord:
    """One candidate that went through every stage."""
    source: Path
    destination: Path

    def report_line(self) -> str:
        return f"ildasm {self.source} to {self.destination}"


class Orchestrator:
    """
    Runs the disassembly pipeline over a list of input paths.

    Example:
        orchestrator = Orchestrator(
            [IldasmRunner(), InProcessDisassembler()],
            output_root=Path("out"),
        )
        records = orchestrator.run(["bin/Release"])
    """

    def __init__(
        self,
        stages: Iterable[DisassemblyBackend],
        output_root: str | Path | None = None,
        preserve_structure: bool = True,
        search_pattern: str = DEFAULT_SEARCH_PATTERN,
        report: Callable[[str], None] | None = None,
        validator: Callable[[Path], bool] = is_assembly,
    ):
        """
        Initialize the pipeline.

        Args:
            stages: Disassembly backends; they run sorted by rank
            output_root: Base output directory (default: current directory)
            preserve_structure: Mirror subdirectories of directory inputs
            search_pattern: Glob applied to file names under directory inputs
            report: Receives one progress line per dispatched file
            validator: Assembly check applied at discovery and before dispatch
        """
        self.stages = order_stages(list(stages))
        self.output_root = Path(output_root) if output_root else Path.cwd()
        self.preserve_structure = preserve_structure
        self.search_pattern = search_pattern or DEFAULT_SEARCH_PATTERN
        self.report = report or print
        self.validator = validator

    def prepare(self) -> None:
        """
        Let every stage resolve its tools before any file is touched.

        Raises:
            ToolNotFoundError: If an external tool is missing
        """
        for stage in self.stages:
            logger.debug(f"Preparing stage {stage.name} (rank {stage.rank})")
            stage.prepare()

    def discover(self, root: InputSpecifier) -> list[CandidateFile]:
        """List the files of a specifier that pass validation."""
        if root.kind is InputKind.FILE:
            paths = [root.path]
        else:
            paths = sorted(
                path for path in root.path.rglob(self.search_pattern) if path.is_file()
            )
            logger.info(f"Found {len(paths)} file(s) matching '{self.search_pattern}' in {root.path}")

        candidates = [CandidateFile(path, root) for path in paths if self.validator(path)]
        logger.debug(f"{len(candidates)} of {len(paths)} file(s) in {root.path} are assemblies")
        return candidates

    def dispatch(self, candidate: CandidateFile) -> DispatchRecord | None:
        """
        Run every stage on one candidate.

        Returns:
            The dispatch record, or None if the file was skipped
        """
        # The file may have changed since discovery
        if not self.validator(candidate.path):
            logger.warning(f"Skipping {candidate.path}: no longer a .NET assembly")
            return None

        destination = resolve_output(
            candidate.path,
            candidate.root,
            self.output_root,
            self.preserve_structure,
        )
        ensure_parent(destination)

        for stage in self.stages:
            logger.debug(f"{stage.name}: {candidate.path} -> {destination}")
            try:
                stage.disassemble(candidate.path, destination)
            except ToolNotFoundError as e:
                logger.error(f"Skipping {candidate.path}: {e.structured_error.message}")
                return None

        record = DispatchRecord(candidate.path, destination)
        self.report(record.report_line())
        return record

    def run(self, inputs: Iterable[str | Path]) -> list[DispatchRecord]:
        """
        Process every input specifier in order.

        Args:
            inputs: Files or directories to disassemble

        Returns:
            One record per file written

        Raises:
            InputNotFoundError: If an input is neither a file nor a directory
            ToolNotFoundError: If a stage tool is missing at preflight
            DisassemblyError: If the in-process stage fails
        """
        self.prepare()

        records: list[DispatchRecord] = []
        for raw_path in inputs:
            root = InputSpecifier.from_path(raw_path)
            logger.info(f"Processing {root.kind.value} {root.path}")

            for candidate in self.discover(root):
                record = self.dispatch(candidate)
                if record is not None:
                    records.append(record)

        logger.info(f"Disassembled {len(records)} assembly file(s)")
        return records
