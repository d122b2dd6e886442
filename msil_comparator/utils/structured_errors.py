"""
Structured error messages with actionable suggestions.

Provides rich error information for the IL dump pipeline including:
- Error codes for programmatic handling
- Human-readable messages
- Actionable suggestions for resolution
- Debug information for troubleshooting
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """
    Standard error codes for msil-comparator operations.

    Naming convention: CATEGORY_SPECIFIC_ERROR
    """

    # Input errors
    INPUT_NOT_FOUND = "INPUT_NOT_FOUND"

    # External tool errors
    TOOL_NOT_FOUND = "TOOL_NOT_FOUND"

    # Disassembly errors
    METADATA_UNREADABLE = "METADATA_UNREADABLE"
    DISASSEMBLY_FAILED = "DISASSEMBLY_FAILED"

    # Output errors
    OUTPUT_WRITE_FAILED = "OUTPUT_WRITE_FAILED"

    # Parameter errors
    PARAMETER_INVALID = "PARAMETER_INVALID"


@dataclass
class StructuredError:
    """
    Rich error information with actionable suggestions.

    Attributes:
        error: Error code for programmatic handling
        message: Human-readable error description
        reason: Explanation of why the error occurred
        suggestions: List of actionable steps to resolve the error
        debug_info: Additional debugging information
    """

    error: ErrorCode
    message: str
    reason: str | None = None
    suggestions: list[str] = field(default_factory=list)
    debug_info: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": self.error.value,
            "message": self.message,
            "reason": self.reason,
            "suggestions": self.suggestions,
            "debug_info": self.debug_info,
        }

    def to_json(self, indent: int = 2) -> str:
        """Convert to formatted JSON string."""
        return json.dumps(self.to_dict(), indent=indent)

    def to_user_message(self) -> str:
        """
        Format error for human-readable display.

        Returns:
            Multi-line string suitable for display to users
        """
        lines = [
            f"Error [{self.error.value}]: {self.message}",
        ]

        if self.reason:
            lines.append(f"Reason: {self.reason}")

        if self.suggestions:
            lines.append("\nSuggested actions:")
            for i, suggestion in enumerate(self.suggestions, 1):
                lines.append(f"  {i}. {suggestion}")

        if self.debug_info:
            lines.append("\nDebug information:")
            for key, value in self.debug_info.items():
                lines.append(f"  {key}: {value}")

        return "\n".join(lines)

    def __str__(self) -> str:
        """Return user-friendly message."""
        return self.to_user_message()


class StructuredBaseError(Exception):
    """
    Exception that wraps a StructuredError.

    Allows raising structured errors as exceptions while maintaining
    all error information.
    """

    def __init__(self, structured_error: StructuredError):
        self.structured_error = structured_error
        super().__init__(structured_error.to_user_message())

    @property
    def code(self) -> ErrorCode:
        return self.structured_error.error

    def to_dict(self) -> dict[str, Any]:
        """Get the underlying structured error as a dictionary."""
        return self.structured_error.to_dict()

    def to_json(self, indent: int = 2) -> str:
        """Get the underlying structured error as JSON."""
        return self.structured_error.to_json(indent)


class InputNotFoundError(StructuredBaseError, FileNotFoundError):
    """An input path is neither an existing file nor a directory."""


class ToolNotFoundError(StructuredBaseError, FileNotFoundError):
    """The external disassembler executable could not be located."""


class DisassemblyError(StructuredBaseError):
    """The in-process disassembler could not render an assembly."""


# =============================================================================
# Suggestion Mappings - Predefined suggestions for common error scenarios
# =============================================================================

INPUT_SUGGESTIONS = {
    "not_found": [
        "Check the path for typos; relative paths are resolved from the current directory",
        "Quote paths that contain spaces",
        "Pass a directory to scan it recursively with --search-pattern",
    ],
}

TOOL_SUGGESTIONS = {
    "not_found": [
        "Copy ildasm.exe into the current working directory",
        "Pass the tool location explicitly with --ildasm-path",
        "Set MSIL_COMPARATOR_ILDASM in the environment or a .env file",
        "Install ildasm on PATH (e.g. 'dotnet tool install -g dotnet-ildasm')",
    ],
}

DISASSEMBLY_SUGGESTIONS = {
    "metadata_unreadable": [
        "Verify the file is a complete, unmodified .NET assembly",
        "Run with -c false to keep only the external disassembler output",
        "Check the log output for the table or heap that failed to parse",
    ],
    "failed": [
        "Run with --log-level DEBUG to see which member failed",
        "Run with -c false to keep only the external disassembler output",
    ],
    "write_failed": [
        "Check that the output directory is writable",
        "Close editors or viewers that lock the .il file",
        "Choose another location with -o",
    ],
}


# =============================================================================
# Error Factory Functions
# =============================================================================


def create_input_not_found_error(path: str) -> StructuredError:
    """Create error for an input specifier that does not exist."""
    return StructuredError(
        error=ErrorCode.INPUT_NOT_FOUND,
        message=f"The {path} file or directory cannot be found.",
        reason="The path is neither an existing file nor an existing directory",
        suggestions=INPUT_SUGGESTIONS["not_found"],
        debug_info={"path": path},
    )


def create_tool_not_found_error(
    tool: str,
    searched: list[str] | None = None,
) -> StructuredError:
    """Create error for a missing external disassembler."""
    debug_info: dict[str, Any] = {"tool": tool}
    if searched:
        debug_info["searched"] = searched

    return StructuredError(
        error=ErrorCode.TOOL_NOT_FOUND,
        message=f"The {tool} file cannot be found.",
        reason="The external disassembler is required before any file is processed",
        suggestions=TOOL_SUGGESTIONS["not_found"],
        debug_info=debug_info,
    )


def create_metadata_unreadable_error(
    path: str,
    detail: str | None = None,
) -> StructuredError:
    """Create error for CLI metadata that could not be parsed."""
    return StructuredError(
        error=ErrorCode.METADATA_UNREADABLE,
        message=f"Cannot read CLI metadata from {path}",
        reason=detail or "The metadata root or table stream is missing or corrupt",
        suggestions=DISASSEMBLY_SUGGESTIONS["metadata_unreadable"],
        debug_info={"path": path},
    )


def create_disassembly_failed_error(
    path: str,
    detail: str | None = None,
    member: str | None = None,
) -> StructuredError:
    """Create error for a failed in-process disassembly."""
    debug_info: dict[str, Any] = {"path": path}
    if member:
        debug_info["member"] = member

    return StructuredError(
        error=ErrorCode.DISASSEMBLY_FAILED,
        message=f"Failed to disassemble {path}",
        reason=detail or "The IL renderer raised an unexpected error",
        suggestions=DISASSEMBLY_SUGGESTIONS["failed"],
        debug_info=debug_info,
    )


def create_output_write_failed_error(path: str, detail: str | None = None) -> StructuredError:
    """Create error for an IL file that could not be written."""
    return StructuredError(
        error=ErrorCode.OUTPUT_WRITE_FAILED,
        message=f"Cannot write {path}",
        reason=detail,
        suggestions=DISASSEMBLY_SUGGESTIONS["write_failed"],
        debug_info={"path": path},
    )


def create_parameter_error(
    param_name: str,
    provided_value: Any,
    expected: str,
) -> StructuredError:
    """Create error for an invalid option value."""
    return StructuredError(
        error=ErrorCode.PARAMETER_INVALID,
        message=f"Invalid value for {param_name}: {provided_value!r}",
        reason=f"Expected {expected}",
        suggestions=[f"Provide {expected} for {param_name}"],
        debug_info={
            "parameter_name": param_name,
            "provided_value": provided_value,
        },
    )
