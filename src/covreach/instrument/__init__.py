"""Instrumentation: counter maps, the AST rewriter and the output directory."""

from covreach.instrument.counter_map import CounterMap, CounterMapDocument
from covreach.instrument.instrumentor import HOOK_NAMES, InstrumentedArtifact, instrument
from covreach.instrument.output import (
    Manifest,
    load_counter_maps,
    load_manifest,
    load_map_history,
    output_paths,
    write_batch,
)

__all__ = [
    "CounterMap",
    "CounterMapDocument",
    "HOOK_NAMES",
    "InstrumentedArtifact",
    "Manifest",
    "instrument",
    "load_counter_maps",
    "load_manifest",
    "load_map_history",
    "output_paths",
    "write_batch",
]
