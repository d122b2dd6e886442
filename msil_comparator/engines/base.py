"""
Base interface for disassembly backends.

Every backend turns one validated assembly into a text file. Backends run
as ordered stages; a later stage may overwrite what an earlier one wrote.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any


class DisassemblyBackend(ABC):
    """Base class for IL disassembly backends."""

    #: Short identifier used in logs and diagnostics.
    name: str = "backend"

    #: Position in the stage list. Lower ranks run first.
    rank: int = 0

    def prepare(self) -> None:
        """
        Resolve anything the backend needs before the first file.

        Raises:
            FileNotFoundError: If a required tool is missing
        """

    @abstractmethod
    def disassemble(self, source_path: Path, output_path: Path) -> None:
        """
        Write the IL text of an assembly.

        Args:
            source_path: Path to a validated assembly
            output_path: File to create or replace; its directory exists

        Raises:
            FileNotFoundError: If the backend's tool is missing
            DisassemblyError: If the assembly cannot be rendered
        """

    @abstractmethod
    def diagnose(self) -> dict[str, Any]:
        """
        Run diagnostics on the backend installation.

        Returns:
            Dictionary with installation status and configuration
        """


def order_stages(stages: list[DisassemblyBackend]) -> list[DisassemblyBackend]:
    """Return stages sorted by rank, keeping the given order for equal ranks."""
    return sorted(stages, key=lambda stage: stage.rank)
