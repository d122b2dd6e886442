"""External IL disassembly through the ildasm command line tool."""

from msil_comparator.engines.ildasm.runner import IldasmRunner

__all__ = ["IldasmRunner"]
