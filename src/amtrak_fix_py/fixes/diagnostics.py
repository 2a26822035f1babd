from dataclasses import dataclass
from enum import Enum, auto
from typing import Iterable, List

import polars as pl


class DiagnosticKind(Enum):
    """
    Non fatal findings reported by a pipeline run
    """

    BROKEN_SHAPE = auto()
    DENYLISTED_SHAPE = auto()
    MIDNIGHT_CROSSING_FIXED = auto()
    MIDNIGHT_CROSSING_UNFIXED = auto()
    MIDNIGHT_CROSSING_EXEMPT = auto()
    MIDNIGHT_EXEMPT_SERVICE = auto()
    EXCLUDED_AGENCY = auto()
    EXCLUDED_ROUTE = auto()
    PHANTOM_TRIP = auto()
    REBRANDED_ROUTE = auto()
    STOP_OVERRIDDEN = auto()

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class Diagnostic:
    """a flagged record, the rule that flagged it and what was done about it"""

    kind: DiagnosticKind
    rule: str
    entity_id: str
    message: str


def diagnostics_for(kind: DiagnosticKind, rule: str, entity_ids: Iterable[str], message: str) -> List[Diagnostic]:
    """one diagnostic per id, in sorted id order"""
    return [Diagnostic(kind=kind, rule=rule, entity_id=entity_id, message=message) for entity_id in sorted(entity_ids)]


def diagnostics_frame(diagnostics: Iterable[Diagnostic]) -> pl.DataFrame:
    """tabulate diagnostics for logging or writing out alongside a corrected feed"""
    return pl.DataFrame(
        [
            {
                "kind": str(diagnostic.kind),
                "rule": diagnostic.rule,
                "entity_id": diagnostic.entity_id,
                "message": diagnostic.message,
            }
            for diagnostic in diagnostics
        ],
        schema={
            "kind": pl.String,
            "rule": pl.String,
            "entity_id": pl.String,
            "message": pl.String,
        },
    )
