"""
IL disassembly engines.

Currently supports:
- ildasm (external process)
- In-process metadata disassembler (dnfile + dncil)
"""

from .base import DisassemblyBackend, order_stages
from .dotnet.disassembler import InProcessDisassembler
from .ildasm.runner import IldasmRunner

__all__ = ["DisassemblyBackend", "IldasmRunner", "InProcessDisassembler", "order_stages"]
