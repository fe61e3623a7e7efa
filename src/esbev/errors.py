"""Per-record failure types and pass accounting."""

from __future__ import annotations

import dataclasses
from typing import Any, Dict, Mapping


class MissingDataError(ValueError):
    """A record lacks a value required for the current stage."""

    def __init__(self, field: str, context: str = "") -> None:
        self.field = field
        self.context = context
        message = f"missing {field}"
        if context:
            message = f"{message} ({context})"
        super().__init__(message)


class MalformedInputError(MissingDataError):
    """A value is present but cannot be interpreted.

    Treated exactly like missing data for that field only.
    """

    def __init__(self, field: str, value: object, context: str = "") -> None:
        self.value = value
        super().__init__(field, context)
        self.args = (f"malformed {field}: {value!r}" + (f" ({context})" if context else ""),)


@dataclasses.dataclass(slots=True)
class PassReport:
    """Counts reported by every batch pass."""

    name: str
    processed: int = 0
    written: int = 0
    ambiguous: int = 0
    skipped: Dict[str, int] = dataclasses.field(default_factory=dict)

    @property
    def skipped_total(self) -> int:
        return sum(self.skipped.values())

    def skip(self, reason: str, count: int = 1) -> None:
        self.skipped[reason] = self.skipped.get(reason, 0) + count

    def as_dict(self) -> Mapping[str, Any]:
        return {
            "pass": self.name,
            "processed": self.processed,
            "written": self.written,
            "ambiguous": self.ambiguous,
            "skipped": dict(self.skipped),
        }


__all__ = ["MalformedInputError", "MissingDataError", "PassReport"]
