"""
In-process .NET disassembly.

Components:
- validator.py: assembly detection from PE/CLI headers
- metadata.py: CLI metadata tables to the writer model
- signatures.py: signature blob decoding
- il_writer.py: IL text rendering
- ordering.py: member ordering strategies
"""

from msil_comparator.engines.dotnet.disassembler import InProcessDisassembler
from msil_comparator.engines.dotnet.validator import is_assembly

__all__ = ["InProcessDisassembler", "is_assembly"]
