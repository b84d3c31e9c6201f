"""Tagged cell values and rows."""

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterator, Optional, Union

Scalar = Union[None, str, int, float, bool]


class ValueKind(str, Enum):
    """Closed set of value kinds a source cell can hold."""
    NULL = "null"
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"


@dataclass(frozen=True)
class TaggedValue:
    """A single source cell with an explicit kind."""
    kind: ValueKind
    value: Scalar = None

    @classmethod
    def of(cls, raw: Any) -> "TaggedValue":
        """
        Tag a raw value.

        Empty and whitespace-only strings are treated as null. Anything outside
        null/string/number/boolean is rejected.
        """
        if raw is None:
            return NULL_VALUE
        # bool is a subclass of int, check it first
        if isinstance(raw, bool):
            return cls(ValueKind.BOOLEAN, raw)
        if isinstance(raw, (int, float)):
            if raw != raw:  # NaN
                return NULL_VALUE
            return cls(ValueKind.NUMBER, raw)
        if isinstance(raw, str):
            if not raw.strip():
                return NULL_VALUE
            return cls(ValueKind.STRING, raw)
        raise ValueError(f"Unsupported cell value type: {type(raw).__name__}")

    @property
    def is_null(self) -> bool:
        return self.kind == ValueKind.NULL

    def as_text(self) -> Optional[str]:
        """Return the trimmed string form, or None for null."""
        if self.kind == ValueKind.NULL:
            return None
        if self.kind == ValueKind.BOOLEAN:
            return "true" if self.value else "false"
        if self.kind == ValueKind.NUMBER and isinstance(self.value, float) and self.value.is_integer():
            return str(int(self.value))
        return str(self.value).strip()


NULL_VALUE = TaggedValue(ValueKind.NULL, None)


class Row(Mapping):
    """Ordered mapping of column name to tagged value."""

    def __init__(self, cells: Dict[str, TaggedValue], number: int = 0):
        self._cells = dict(cells)
        self.number = number

    @classmethod
    def from_raw(cls, raw: Dict[str, Any], number: int = 0) -> "Row":
        return cls({str(k): TaggedValue.of(v) for k, v in raw.items()}, number=number)

    def __getitem__(self, column: str) -> TaggedValue:
        return self._cells[column]

    def __iter__(self) -> Iterator[str]:
        return iter(self._cells)

    def __len__(self) -> int:
        return len(self._cells)

    def get_value(self, column: str) -> TaggedValue:
        return self._cells.get(column, NULL_VALUE)

    def to_dict(self) -> Dict[str, Scalar]:
        return {name: cell.value for name, cell in self._cells.items()}

    def __repr__(self) -> str:
        return f"Row(number={self.number}, cells={self.to_dict()!r})"
