"""
Tests for structured error messages.

Verifies that error codes, messages, suggestions, and debug info
are properly formatted for actionable user feedback.
"""

import json

import pytest

from msil_comparator.utils.structured_errors import (
    DisassemblyError,
    ErrorCode,
    InputNotFoundError,
    StructuredBaseError,
    StructuredError,
    ToolNotFoundError,
    create_disassembly_failed_error,
    create_input_not_found_error,
    create_metadata_unreadable_error,
    create_output_write_failed_error,
    create_parameter_error,
    create_tool_not_found_error,
)


class TestStructuredError:
    """Tests for StructuredError class."""

    def test_basic_creation(self):
        """Test creating a basic structured error."""
        error = StructuredError(
            error=ErrorCode.METADATA_UNREADABLE,
            message="Cannot read CLI metadata from Broken.dll",
            reason="The #~ stream is truncated",
            suggestions=[
                "Verify the file is a complete .NET assembly",
                "Run with -c false",
            ],
            debug_info={"path": "Broken.dll"},
        )

        assert error.error == ErrorCode.METADATA_UNREADABLE
        assert "Broken.dll" in error.message
        assert len(error.suggestions) == 2

    def test_to_dict(self):
        """Test conversion to dictionary."""
        error = StructuredError(
            error=ErrorCode.PARAMETER_INVALID,
            message="Invalid value for member order: 'random'",
            reason="Expected declaration, name, token",
            debug_info={"provided_value": "random"},
        )

        result = error.to_dict()

        assert result["error"] == "PARAMETER_INVALID"
        assert result["reason"] == "Expected declaration, name, token"
        assert result["suggestions"] == []
        assert result["debug_info"]["provided_value"] == "random"

    def test_to_json(self):
        """Test JSON serialization."""
        error = StructuredError(error=ErrorCode.DISASSEMBLY_FAILED, message="Cannot disassemble App.dll")

        parsed = json.loads(error.to_json())

        assert parsed["error"] == "DISASSEMBLY_FAILED"
        assert parsed["message"] == "Cannot disassemble App.dll"

    def test_to_user_message(self):
        """Test human-readable message format."""
        error = StructuredError(
            error=ErrorCode.TOOL_NOT_FOUND,
            message="The ildasm.exe file cannot be found.",
            reason="Not in the working directory",
            suggestions=["Copy ildasm.exe here", "Use --ildasm-path"],
            debug_info={"searched": ["./ildasm.exe"]},
        )

        msg = error.to_user_message()

        assert "Error [TOOL_NOT_FOUND]" in msg
        assert "Reason: Not in the working directory" in msg
        assert "Suggested actions:" in msg
        assert "1. Copy ildasm.exe here" in msg
        assert "2. Use --ildasm-path" in msg
        assert "searched: ['./ildasm.exe']" in msg

    def test_str_method(self):
        """Test __str__ returns user message."""
        error = StructuredError(error=ErrorCode.INPUT_NOT_FOUND, message="Something broke")

        assert str(error) == "Error [INPUT_NOT_FOUND]: Something broke"


class TestStructuredBaseError:
    """Tests for StructuredBaseError and its subclasses."""

    def test_exception_wraps_error(self):
        structured_error = StructuredError(error=ErrorCode.DISASSEMBLY_FAILED, message="boom")

        exc = StructuredBaseError(structured_error)

        assert exc.structured_error is structured_error
        assert exc.code == ErrorCode.DISASSEMBLY_FAILED
        assert "DISASSEMBLY_FAILED" in str(exc)

    def test_exception_to_dict(self):
        exc = StructuredBaseError(create_input_not_found_error("bin"))

        assert exc.to_dict()["error"] == "INPUT_NOT_FOUND"
        assert json.loads(exc.to_json())["debug_info"]["path"] == "bin"

    @pytest.mark.parametrize("cls", [InputNotFoundError, ToolNotFoundError])
    def test_not_found_errors_are_file_not_found(self, cls):
        """Test not-found errors can be caught as FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            raise cls(create_input_not_found_error("x"))

    def test_missing_tool_distinct_from_missing_input(self):
        tool_error = ToolNotFoundError(create_tool_not_found_error("ildasm.exe"))

        assert not isinstance(tool_error, InputNotFoundError)

    def test_disassembly_error_is_not_os_error(self):
        exc = DisassemblyError(create_disassembly_failed_error("App.dll"))

        assert not isinstance(exc, OSError)
        assert isinstance(exc, StructuredBaseError)


class TestErrorFactoryFunctions:
    """Tests for error factory functions."""

    def test_create_input_not_found_error(self):
        error = create_input_not_found_error("bin/Release")

        assert error.error == ErrorCode.INPUT_NOT_FOUND
        assert error.message == "The bin/Release file or directory cannot be found."
        assert error.debug_info["path"] == "bin/Release"
        assert len(error.suggestions) > 0

    def test_create_tool_not_found_error(self):
        error = create_tool_not_found_error("ildasm.exe", ["/work/ildasm.exe", "PATH"])

        assert error.error == ErrorCode.TOOL_NOT_FOUND
        assert error.message == "The ildasm.exe file cannot be found."
        assert error.debug_info["searched"] == ["/work/ildasm.exe", "PATH"]
        assert any("--ildasm-path" in s for s in error.suggestions)

    def test_create_tool_not_found_error_without_search(self):
        error = create_tool_not_found_error("ildasm.exe")

        assert "searched" not in error.debug_info

    def test_create_metadata_unreadable_error(self):
        error = create_metadata_unreadable_error("Broken.dll", "no CLI header")

        assert error.error == ErrorCode.METADATA_UNREADABLE
        assert "Broken.dll" in error.message
        assert error.reason == "no CLI header"

    def test_create_disassembly_failed_error(self):
        error = create_disassembly_failed_error("App.dll", "bad opcode", member="Widget::Run")

        assert error.error == ErrorCode.DISASSEMBLY_FAILED
        assert error.reason == "bad opcode"
        assert error.debug_info["member"] == "Widget::Run"

    def test_create_parameter_error(self):
        error = create_parameter_error("member order", "random", "one of declaration, name, token")

        assert error.error == ErrorCode.PARAMETER_INVALID
        assert "member order" in error.message
        assert "'random'" in error.message
        assert error.debug_info["provided_value"] == "random"

    def test_create_output_write_failed_error(self):
        error = create_output_write_failed_error("out/App.dll.il", "Permission denied")

        assert error.error == ErrorCode.OUTPUT_WRITE_FAILED
        assert error.message == "Cannot write out/App.dll.il"
        assert error.reason == "Permission denied"
        assert error.debug_info["path"] == "out/App.dll.il"
