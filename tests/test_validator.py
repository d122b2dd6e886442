"""
Tests for assembly detection.

Verifies that only PE images carrying CLI metadata with an assembly manifest
are accepted, independent of file extension.
"""

import logging

import pytest

from conftest import build_clr_image, build_native_image
from msil_comparator.engines.dotnet.validator import is_assembly


class TestIsAssembly:
    """Tests for is_assembly()."""

    def test_accepts_assembly(self, make_assembly):
        """Test a module with a manifest row is an assembly."""
        path = make_assembly("Sample.dll")

        assert is_assembly(path) is True

    def test_repeated_calls_agree(self, make_assembly):
        """Test the verdict is stable across calls."""
        path = make_assembly("Sample.dll")

        assert [is_assembly(path) for _ in range(3)] == [True, True, True]

    def test_verdict_not_cached(self, make_file):
        """Test the file is re-read on every call."""
        path = make_file("Sample.dll", build_clr_image())
        assert is_assembly(path) is True

        path.write_bytes(build_native_image())
        assert is_assembly(path) is False

    def test_rejects_bare_module(self, make_assembly):
        """Test metadata without an Assembly row is not an assembly."""
        path = make_assembly("Part.netmodule", assembly_name=None)

        assert is_assembly(path) is False

    def test_rejects_native_image(self, make_file):
        """Test a PE file without CLI header is rejected."""
        path = make_file("native.dll", build_native_image())

        assert is_assembly(path) is False

    def test_rejects_non_pe(self, make_file, caplog):
        """Test arbitrary bytes are rejected with a warning."""
        path = make_file("readme.dll", b"This is not a portable executable")

        with caplog.at_level(logging.WARNING):
            assert is_assembly(path) is False

        assert "is not an executable" in caplog.text

    def test_rejects_truncated_header(self, make_file):
        """Test a file cut off inside the DOS header is rejected."""
        path = make_file("truncated.exe", b"MZ\x90\x00")

        assert is_assembly(path) is False

    def test_missing_file(self, tmp_path, caplog):
        """Test a missing file yields False and a warning."""
        path = tmp_path / "gone.dll"

        with caplog.at_level(logging.WARNING):
            assert is_assembly(path) is False

        assert "cannot be found" in caplog.text

    def test_extension_ignored(self, make_file):
        """Test the extension does not decide the verdict."""
        path = make_file("library.txt", build_clr_image())

        assert is_assembly(path) is True

    def test_directory_propagates(self, tmp_path):
        """Test I/O errors other than a missing file propagate."""
        with pytest.raises(OSError):
            is_assembly(tmp_path)
