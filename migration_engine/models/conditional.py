"""Conditional mapping rules: per-row routing of a confirmed source column."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum
import uuid

from .schema import TransformType


class ConditionType(str, Enum):
    VALUE_EQUALS = "value_equals"
    VALUE_IN = "value_in"
    VALUE_MATCHES = "value_matches"
    VALUE_NOT_MATCHES = "value_not_matches"
    VALUE_RANGE = "value_range"
    VALUE_NULL = "value_null"
    VALUE_NOT_NULL = "value_not_null"


class ActionType(str, Enum):
    """What happens to the cell when a rule matches."""
    MAP_TO_TABLE = "map_to_table"  # same column name, another table
    MAP_TO_COLUMN = "map_to_column"
    TRANSFORM = "transform"
    SKIP = "skip"


@dataclass
class RuleCondition:
    """
    Test on one field of the source row.

    The field value is compared as text; a missing field reads as "".
    """
    type: ConditionType
    field: str
    value: Optional[str] = None
    values: List[str] = field(default_factory=list)
    pattern: Optional[str] = None
    min: Optional[float] = None
    max: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"type": self.type.value, "field": self.field}
        if self.value is not None:
            result["value"] = self.value
        if self.values:
            result["values"] = list(self.values)
        if self.pattern is not None:
            result["pattern"] = self.pattern
        if self.min is not None:
            result["min"] = self.min
        if self.max is not None:
            result["max"] = self.max
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RuleCondition":
        value = data.get("value")
        return cls(
            type=ConditionType(data["type"]),
            field=data["field"],
            value=str(value) if value is not None else None,
            values=[str(v) for v in data.get("values", [])],
            pattern=data.get("pattern"),
            min=float(data["min"]) if data.get("min") is not None else None,
            max=float(data["max"]) if data.get("max") is not None else None,
        )


@dataclass
class RuleAction:
    type: ActionType
    target_table: Optional[str] = None
    target_column: Optional[str] = None
    transform: Optional[TransformType] = None
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"type": self.type.value}
        if self.target_table is not None:
            result["target_table"] = self.target_table
        if self.target_column is not None:
            result["target_column"] = self.target_column
        if self.transform is not None:
            result["transform"] = self.transform.value
        if self.reason:
            result["reason"] = self.reason
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RuleAction":
        transform = data.get("transform")
        return cls(
            type=ActionType(data["type"]),
            target_table=data.get("target_table"),
            target_column=data.get("target_column"),
            transform=TransformType(transform) if transform else None,
            reason=data.get("reason", ""),
        )


@dataclass
class ConditionalRule:
    """
    Routes one confirmed source column differently for rows that match.

    Rules of a column are evaluated in ascending priority and the first
    match wins; rows that match no rule follow the confirmed mapping.
    """
    source_column: str
    condition: RuleCondition
    action: RuleAction
    priority: int = 100
    rule_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    is_active: bool = True

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "rule_id": self.rule_id,
            "source_column": self.source_column,
            "condition": self.condition.to_dict(),
            "action": self.action.to_dict(),
            "priority": self.priority,
            "is_active": self.is_active,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConditionalRule":
        """Create from dictionary representation."""
        kwargs = {}
        if data.get("rule_id"):
            kwargs["rule_id"] = data["rule_id"]
        return cls(
            source_column=data["source_column"],
            condition=RuleCondition.from_dict(data["condition"]),
            action=RuleAction.from_dict(data["action"]),
            priority=int(data.get("priority", 100)),
            is_active=data.get("is_active", True),
            **kwargs,
        )
