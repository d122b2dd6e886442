"""
MSIL Comparator.

Dumps .NET assemblies to IL text with a deterministic member order so that
builds can be compared with ordinary text diff tools.
"""

__version__ = "0.1.0"
