"""Evaluation of conditional mapping rules against source rows."""

import logging
import re
from typing import Dict, Iterable, List, Optional, Tuple

from ..errors import ValidationError
from ..models.conditional import ActionType, ConditionType, ConditionalRule, RuleCondition
from ..models.mapping import ConfirmedMapping
from ..models.schema import TargetSchema, TransformType
from ..models.values import Row

logger = logging.getLogger(__name__)

_NULL_TEXT = {"", "null", "undefined"}

Route = Tuple[str, str, TransformType]


class ConditionalMappingEvaluator:
    """
    Picks, per row, where a confirmed source column is written.

    Supports:
    - Equality, membership, regex and numeric range tests on any source field
    - Null / not-null tests (empty, "null" and "undefined" count as null)
    - Rerouting to another table or column, swapping the transform, or
      skipping the cell for that row
    """

    def __init__(self, rules: Iterable[ConditionalRule]):
        self._rules: Dict[str, List[ConditionalRule]] = {}
        self._patterns: Dict[str, re.Pattern] = {}

        active = sorted((r for r in rules if r.is_active), key=lambda r: r.priority)
        for rule in active:
            self._rules.setdefault(rule.source_column, []).append(rule)
            condition = rule.condition
            if condition.type in (ConditionType.VALUE_MATCHES, ConditionType.VALUE_NOT_MATCHES):
                try:
                    self._patterns[rule.rule_id] = re.compile(condition.pattern or "")
                except re.error as e:
                    raise ValidationError(f"Rule {rule.rule_id} has an invalid pattern: {e}")

        if self._rules:
            logger.info(f"Loaded {len(self)} conditional mapping rules for {len(self._rules)} columns")

    def __len__(self) -> int:
        return sum(len(rules) for rules in self._rules.values())

    def rules_for(self, source_column: str) -> List[ConditionalRule]:
        return list(self._rules.get(source_column, []))

    def check_targets(self, schema: TargetSchema, mappings: List[ConfirmedMapping]) -> List[str]:
        """
        Validate rule targets for the given mappings.

        Returns:
            Every table a matching rule may write to, in rule order

        Raises:
            ValidationError: a rule points at a column the schema lacks
        """
        tables: List[str] = []
        unknown: List[str] = []
        for mapping in mappings:
            for rule in self._rules.get(mapping.source_column, []):
                if rule.action.type == ActionType.SKIP:
                    continue
                table, column, _ = self._target(mapping, rule)
                if schema.get_column(table, column) is None:
                    unknown.append(f"{rule.rule_id} -> {table}.{column}")
                elif table not in tables:
                    tables.append(table)
        if unknown:
            raise ValidationError(f"Conditional rules target unknown columns: {', '.join(unknown)}")
        return tables

    def evaluate(self, source_column: str, row: Row) -> Optional[ConditionalRule]:
        """First rule of the column whose condition holds for the row."""
        for rule in self._rules.get(source_column, []):
            if self.matches(rule, row):
                return rule
        return None

    def route(self, mapping: ConfirmedMapping, row: Row) -> Tuple[Optional[Route], Optional[ConditionalRule]]:
        """
        Destination of one mapped cell for this row.

        Returns:
            ((table, column, transform) or None when the cell is skipped,
             the rule that decided it or None)
        """
        rule = self.evaluate(mapping.source_column, row)
        if rule is None:
            return (mapping.target_table, mapping.target_column, mapping.transform), None
        if rule.action.type == ActionType.SKIP:
            return None, rule
        return self._target(mapping, rule), rule

    def matches(self, rule: ConditionalRule, row: Row) -> bool:
        condition = rule.condition
        text = row.get_value(condition.field).as_text() or ""

        if condition.type == ConditionType.VALUE_EQUALS:
            return text == (condition.value or "")
        if condition.type == ConditionType.VALUE_IN:
            return text in condition.values
        if condition.type == ConditionType.VALUE_MATCHES:
            return self._patterns[rule.rule_id].search(text) is not None
        if condition.type == ConditionType.VALUE_NOT_MATCHES:
            return self._patterns[rule.rule_id].search(text) is None
        if condition.type == ConditionType.VALUE_RANGE:
            return _in_range(text, condition)
        if condition.type == ConditionType.VALUE_NULL:
            return text.lower() in _NULL_TEXT
        if condition.type == ConditionType.VALUE_NOT_NULL:
            return text.lower() not in _NULL_TEXT
        return False

    @staticmethod
    def _target(mapping: ConfirmedMapping, rule: ConditionalRule) -> Route:
        action = rule.action
        transform = action.transform or mapping.transform
        if action.type == ActionType.MAP_TO_TABLE:
            return action.target_table or mapping.target_table, mapping.target_column, transform
        if action.type == ActionType.MAP_TO_COLUMN:
            return (
                action.target_table or mapping.target_table,
                action.target_column or mapping.target_column,
                transform,
            )
        return mapping.target_table, mapping.target_column, transform


def _in_range(text: str, condition: RuleCondition) -> bool:
    try:
        number = float(text)
    except ValueError:
        return False
    if condition.min is not None and number < condition.min:
        return False
    if condition.max is not None and number > condition.max:
        return False
    return True
