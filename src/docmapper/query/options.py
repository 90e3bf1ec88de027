# src/docmapper/query/options.py
import copy
from dataclasses import dataclass
from typing import Any, Optional, Tuple

from pymongo import ASCENDING, DESCENDING


# --- Find Options ---
@dataclass
class FindOptions:
    """Cursor options applied when a query is executed."""

    limit: int = 0
    skip: int = 0
    batch_size: Optional[int] = None
    max_time_ms: Optional[int] = None
    no_cursor_timeout: bool = False

    def __repr__(self) -> str:
        parts = []
        if self.limit:
            parts.append(f"limit={self.limit!r}")
        if self.skip:
            parts.append(f"skip={self.skip!r}")
        if self.batch_size is not None:
            parts.append(f"batch_size={self.batch_size!r}")
        if self.max_time_ms is not None:
            parts.append(f"max_time_ms={self.max_time_ms!r}")
        if self.no_cursor_timeout:
            parts.append("no_cursor_timeout=True")
        return f"FindOptions({', '.join(parts)})"

    def copy(self) -> "FindOptions":
        return copy.copy(self)


# --- Sorting ---
@dataclass(frozen=True)
class Sort:
    field: str
    order: Any

    NATURAL = "$natural"

    @classmethod
    def ascending(cls, field: str) -> "Sort":
        return cls(field, ASCENDING)

    @classmethod
    def descending(cls, field: str) -> "Sort":
        return cls(field, DESCENDING)

    @classmethod
    def natural_ascending(cls) -> "Sort":
        return cls(cls.NATURAL, ASCENDING)

    @classmethod
    def natural_descending(cls) -> "Sort":
        return cls(cls.NATURAL, DESCENDING)

    def as_tuple(self) -> Tuple[str, Any]:
        return self.field, self.order
