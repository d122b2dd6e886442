"""
In-process IL disassembler.

Reads CLI metadata with dnfile, decodes method bodies with dncil and renders
the result through ILWriter. Its output replaces whatever the external stage
wrote, with members ordered by the configured EntityProcessor.
"""

import logging
import platform
import time
from importlib import metadata as importlib_metadata
from pathlib import Path
from typing import Any

import pefile
from dncil.cil.error import MethodBodyFormatError

from msil_comparator.engines.base import DisassemblyBackend
from msil_comparator.engines.dotnet.il_writer import ILOutput, ILWriter
from msil_comparator.engines.dotnet.metadata import MetadataFormatError, load_module
from msil_comparator.engines.dotnet.model import ModuleImage
from msil_comparator.engines.dotnet.ordering import EntityProcessor, SortByNameProcessor
from msil_comparator.engines.dotnet.signatures import SignatureError
from msil_comparator.utils.structured_errors import (
    DisassemblyError,
    create_disassembly_failed_error,
    create_metadata_unreadable_error,
    create_output_write_failed_error,
)

logger = logging.getLogger(__name__)


class InProcessDisassembler(DisassemblyBackend):
    """
    Metadata-driven backend that needs no external tool.

    Output layout:
    1. Assembly references
    2. Assembly header (only for files with a manifest)
    3. Module header, without the MVID
    4. Types and their members
    """

    name = "ilspy"
    rank = 20

    def __init__(self, entity_processor: EntityProcessor | None = None):
        self.entity_processor = entity_processor or SortByNameProcessor()

    def render(self, image: ModuleImage) -> str:
        """Render a loaded module as IL text."""
        output = ILOutput()
        writer = ILWriter(output, self.entity_processor)

        writer.write_assembly_references(image)
        if image.is_assembly:
            writer.write_assembly_header(image)
        output.write_line()
        writer.write_module_header(image, skip_mvid=True)
        output.write_line()
        writer.write_module_contents(image)

        return output.getvalue()

    def load(self, source_path: Path) -> ModuleImage:
        """
        Load an assembly into the writer model.

        Raises:
            DisassemblyError: If the metadata cannot be read
        """
        try:
            return load_module(source_path)
        except FileNotFoundError as e:
            raise DisassemblyError(
                create_metadata_unreadable_error(str(source_path), f"File vanished: {e}")
            ) from e
        except (pefile.PEFormatError, MetadataFormatError) as e:
            raise DisassemblyError(
                create_metadata_unreadable_error(str(source_path), str(e))
            ) from e
        except (SignatureError, MethodBodyFormatError) as e:
            raise DisassemblyError(
                create_disassembly_failed_error(str(source_path), str(e))
            ) from e
        except (IndexError, KeyError, ValueError) as e:
            raise DisassemblyError(
                create_metadata_unreadable_error(
                    str(source_path), f"{type(e).__name__}: {e}"
                )
            ) from e

    def disassemble(self, source_path: Path, output_path: Path) -> None:
        """
        Write the IL of an assembly, replacing the destination file.

        Args:
            source_path: Path to a validated assembly
            output_path: IL file to overwrite

        Raises:
            DisassemblyError: If the assembly cannot be rendered or written
        """
        source_path = Path(source_path)
        output_path = Path(output_path)

        start_time = time.time()
        image = self.load(source_path)
        text = self.render(image)

        try:
            with open(output_path, "w", encoding="utf-8", newline="\n") as f:
                f.write(text)
        except OSError as e:
            raise DisassemblyError(
                create_output_write_failed_error(str(output_path), str(e))
            ) from e

        elapsed = time.time() - start_time
        logger.debug(
            f"Rendered {source_path.name} ({len(text)} chars, "
            f"{self.entity_processor.name} order) in {elapsed:.2f}s"
        )

    def diagnose(self) -> dict[str, Any]:
        diag: dict[str, Any] = {
            "backend": self.name,
            "platform": platform.system(),
            "member_order": self.entity_processor.name,
            "libraries": {},
        }
        for package in ("dnfile", "dncil", "pefile"):
            try:
                diag["libraries"][package] = importlib_metadata.version(package)
            except importlib_metadata.PackageNotFoundError:
                diag["libraries"][package] = None
        return diag
