"""Discovery, output path resolution and stage dispatch."""

from msil_comparator.pipeline.orchestrator import DispatchRecord, Orchestrator
from msil_comparator.pipeline.paths import InputKind, InputSpecifier, resolve_output

__all__ = ["DispatchRecord", "InputKind", "InputSpecifier", "Orchestrator", "resolve_output"]
