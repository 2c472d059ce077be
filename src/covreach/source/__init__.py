"""Source model: units, countable units and the structural model builder."""

from covreach.source.builder import build
from covreach.source.models import (
    BranchUnit,
    CountableUnit,
    DecisionSite,
    LineUnit,
    SourceUnit,
    StatementRef,
    StructuralModel,
)

__all__ = [
    "BranchUnit",
    "CountableUnit",
    "DecisionSite",
    "LineUnit",
    "SourceUnit",
    "StatementRef",
    "StructuralModel",
    "build",
]
