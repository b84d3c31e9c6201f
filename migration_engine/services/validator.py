"""Validation service for target rows."""

import re
import logging
from datetime import date
from typing import Any, Callable, Dict, List, Optional

from ..models.schema import SemanticType, TargetColumn, TargetTable
from ..models.record import FieldViolation
from .profiler import STATE_CODES, is_valid_npi

logger = logging.getLogger(__name__)


class ValidationRules:
    """Declared rules per semantic type. Each returns an error message or None."""

    @staticmethod
    def npi(value: Any) -> Optional[str]:
        if not is_valid_npi(str(value)):
            return "Invalid NPI (10 digits with a valid check digit required)"
        return None

    @staticmethod
    def email(value: Any) -> Optional[str]:
        """Validate email format."""
        email_pattern = r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"
        if not re.match(email_pattern, str(value)):
            return "Invalid email format"
        return None

    @staticmethod
    def phone(value: Any) -> Optional[str]:
        """Validate E.164 phone format."""
        if not re.fullmatch(r"\+[1-9]\d{7,14}", str(value)):
            return "Phone number is not in E.164 format"
        return None

    @staticmethod
    def iso_date(value: Any) -> Optional[str]:
        text = str(value)
        if not re.fullmatch(r"\d{4}-\d{2}-\d{2}", text):
            return "Date is not in YYYY-MM-DD format"
        try:
            date.fromisoformat(text)
        except ValueError:
            return "Date is not a real calendar date"
        return None

    @staticmethod
    def iso_datetime(value: Any) -> Optional[str]:
        if not re.match(r"^\d{4}-\d{2}-\d{2}(T\d{2}:\d{2}(:\d{2})?.*)?$", str(value)):
            return "Datetime is not ISO-8601"
        return None

    @staticmethod
    def state(value: Any) -> Optional[str]:
        if str(value) not in STATE_CODES:
            return "State must be a two-letter US state code"
        return None

    @staticmethod
    def zip_code(value: Any) -> Optional[str]:
        if not re.fullmatch(r"\d{5}(-\d{4})?", str(value)):
            return "Invalid ZIP code"
        return None

    @staticmethod
    def ssn(value: Any) -> Optional[str]:
        if not re.fullmatch(r"\d{3}-?\d{2}-?\d{4}|XXX-XX-\d{4}", str(value)):
            return "Invalid SSN format"
        return None

    @staticmethod
    def number(value: Any) -> Optional[str]:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return "Value is not numeric"
        return None

    @staticmethod
    def boolean(value: Any) -> Optional[str]:
        if not isinstance(value, bool):
            return "Value is not a boolean"
        return None


class RecordValidator:
    """
    Validator for transformed target rows before they are written.

    Supports:
    - Required field validation
    - Semantic type rules (NPI checksum, email, E.164 phone, ISO dates, ...)
    - Canonical-format checks used for consistency scoring
    - Custom validation rules
    """

    def __init__(self):
        """Initialize the validator."""
        self._custom_validators: Dict[SemanticType, Callable[[Any], Optional[str]]] = {}
        self._type_rules: Dict[SemanticType, Callable[[Any], Optional[str]]] = {
            SemanticType.NPI: ValidationRules.npi,
            SemanticType.EMAIL: ValidationRules.email,
            SemanticType.PHONE: ValidationRules.phone,
            SemanticType.DATE: ValidationRules.iso_date,
            SemanticType.DATETIME: ValidationRules.iso_datetime,
            SemanticType.STATE: ValidationRules.state,
            SemanticType.ZIP: ValidationRules.zip_code,
            SemanticType.SSN: ValidationRules.ssn,
            SemanticType.NUMBER: ValidationRules.number,
            SemanticType.BOOLEAN: ValidationRules.boolean,
        }

    def register_validator(self, semantic_type: SemanticType, func: Callable[[Any], Optional[str]]) -> None:
        """Register a custom validation rule, replacing the built-in one."""
        self._custom_validators[semantic_type] = func

    def has_rule(self, semantic_type: SemanticType) -> bool:
        return semantic_type in self._custom_validators or semantic_type in self._type_rules

    def validate_record(
        self,
        table: TargetTable,
        values: Dict[str, Any],
    ) -> List[FieldViolation]:
        """
        Validate a transformed row against its target table.

        Args:
            table: The target table declaration
            values: Column -> transformed value for the row

        Returns:
            List of violations; empty when the row is valid
        """
        violations = []

        for column_name in table.required_columns:
            if self._is_missing(values.get(column_name)):
                violations.append(FieldViolation(
                    column=column_name,
                    message=f"Required field missing: {column_name}",
                    rule="required",
                    table=table.name,
                ))

        for column_name, value in values.items():
            column = table.columns.get(column_name)
            if column is None:
                violations.append(FieldViolation(
                    column=column_name,
                    message=f"Unknown column in target table {table.name}",
                    rule="unknown_column",
                    value=value,
                    table=table.name,
                ))
                continue
            violation = self.validate_value(column, value)
            if violation:
                violation.table = table.name
                violations.append(violation)

        return violations

    def validate_value(self, column: TargetColumn, value: Any) -> Optional[FieldViolation]:
        """Check one value against its column's semantic rule. Nulls pass."""
        if self._is_missing(value):
            return None

        rule = self._custom_validators.get(column.semantic_type) or self._type_rules.get(column.semantic_type)
        if not rule:
            return None

        message = rule(value)
        if message:
            return FieldViolation(
                column=column.name,
                message=message,
                rule=column.semantic_type.value,
                value=value,
            )
        return None

    def is_canonical(self, column: TargetColumn, value: Any) -> bool:
        """
        Whether a non-null value is in the canonical post-transform format.

        Typed columns are canonical when they pass their rule; free text is
        canonical when it carries no surrounding whitespace, codes when
        upper-case and emails when lower-case.
        """
        if self._is_missing(value):
            return True
        if column.semantic_type == SemanticType.EMAIL and str(value) != str(value).lower():
            return False
        if self.has_rule(column.semantic_type):
            return self.validate_value(column, value) is None
        if column.semantic_type == SemanticType.CODE and isinstance(value, str):
            return value == value.strip().upper()
        if isinstance(value, str):
            return value == value.strip()
        return True

    @staticmethod
    def _is_missing(value: Any) -> bool:
        return value is None or (isinstance(value, str) and not value.strip())
