"""
Input specifiers and output path resolution.

An input specifier is a file or a directory given by the user. Its kind is
probed once, when the specifier is created, and carried with every file
discovered under it.
"""

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from msil_comparator.utils.structured_errors import (
    InputNotFoundError,
    create_input_not_found_error,
)

IL_SUFFIX = ".il"


class InputKind(str, Enum):
    FILE = "file"
    DIRECTORY = "directory"


@dataclass(frozen=True)
class InputSpecifier:
    """A user-supplied path and what it was when first looked at."""
    path: Path
    kind: InputKind

    @classmethod
    def from_path(cls, path: str | Path) -> "InputSpecifier":
        """
        Probe a path and build a specifier.

        Raises:
            InputNotFoundError: If the path is neither a file nor a directory
        """
        path = Path(path)
        if path.is_file():
            return cls(path, InputKind.FILE)
        if path.is_dir():
            return cls(path, InputKind.DIRECTORY)
        raise InputNotFoundError(create_input_not_found_error(str(path)))

    @property
    def name(self) -> str:
        return root_name(self.path)


@dataclass(frozen=True)
class CandidateFile:
    """A discovered file and the specifier it was found under."""
    path: Path
    root: InputSpecifier


def root_name(path: Path) -> str:
    """Last component of the absolute path, so "." still names a directory."""
    return Path(os.path.abspath(path)).name


def resolve_output(
    candidate: Path,
    root: InputSpecifier,
    output_root: Path,
    preserve_structure: bool,
) -> Path:
    """
    Compute where the IL text of a candidate file goes.

    Args:
        candidate: The discovered file
        root: Specifier the file was discovered under
        output_root: Base output directory
        preserve_structure: Mirror the subdirectories below a directory root

    Returns:
        Path of the .il file to write
    """
    candidate = Path(candidate)
    base = Path(output_root) / f"{root.name}{IL_SUFFIX}"
    file_name = candidate.name

    if root.kind is InputKind.FILE:
        return base / f"{file_name}{IL_SUFFIX}"

    if preserve_structure:
        relative = os.path.relpath(os.path.abspath(candidate.parent), os.path.abspath(root.path))
        if relative != os.curdir:
            base = base / relative

    return base / file_name / f"{file_name}{IL_SUFFIX}"


def ensure_parent(target: Path) -> None:
    """Create all missing ancestors of target."""
    Path(target).parent.mkdir(parents=True, exist_ok=True)
