"""Transformation engine for normalizing source cells into target format."""

import hashlib
import json
import re
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple
from dateutil import parser as date_parser

from ..models.schema import TransformType
from ..models.record import TransformationStep
from .profiler import US_STATES, STATE_CODES

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"yes", "true", "1", "y", "t"}
_FALSE_VALUES = {"no", "false", "0", "n", "f"}


def value_hash(value: Any) -> str:
    """Stable SHA-256 of a cell value, used by lineage."""
    encoded = json.dumps(value, sort_keys=True, default=str)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


class TransformEngine:
    """
    Engine for normalizing cell values.

    Supports:
    - Built-in transformation functions (phone to E.164, dates to ISO-8601,
      name parsing, state codes, case and type coercion)
    - Custom transformation functions registered by name
    - Per-step before/after hashes for lineage
    """

    def __init__(self, default_country_code: str = "1"):
        """Initialize the transform engine."""
        self.default_country_code = default_country_code
        self._custom_transforms: Dict[str, Callable] = {}
        self._builtin_transforms = self._register_builtin_transforms()

    def _register_builtin_transforms(self) -> Dict[str, Callable]:
        """Register all built-in transformation functions."""
        return {
            TransformType.DIRECT.value: self._transform_direct,
            TransformType.TRIM.value: self._transform_trim,
            TransformType.UPPERCASE.value: self._transform_uppercase,
            TransformType.LOWERCASE.value: self._transform_lowercase,
            TransformType.NORMALIZE_PHONE.value: self._transform_normalize_phone,
            TransformType.CONVERT_DATE_TO_ISO.value: self._transform_date_to_iso,
            TransformType.PARSE_NAME_FIRST.value: self._transform_parse_name_first,
            TransformType.PARSE_NAME_LAST.value: self._transform_parse_name_last,
            TransformType.CONVERT_STATE_TO_CODE.value: self._transform_state_to_code,
            TransformType.TO_NUMBER.value: self._transform_to_number,
            TransformType.TO_BOOLEAN.value: self._transform_to_boolean,
            TransformType.DIGITS_ONLY.value: self._transform_digits_only,
        }

    def register_transform(self, name: str, func: Callable) -> None:
        """Register a custom transformation function."""
        self._custom_transforms[name] = func

    def has_transform(self, name: str) -> bool:
        return name in self._custom_transforms or name in self._builtin_transforms

    def apply(
        self,
        value: Any,
        transform: Any,
        config: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        context: Optional[Dict[str, Any]] = None
    ) -> Tuple[Any, List[TransformationStep]]:
        """
        Apply a transform to one cell value.

        Args:
            value: Raw cell value (None, str, number or bool)
            transform: TransformType or the name of a registered transform
            config: Transform configuration
            data: The whole source row, for transforms that need siblings
            context: Additional context

        Returns:
            (transformed value, lineage steps)
        """
        transform_name = transform.value if isinstance(transform, TransformType) else transform
        transform_func = (
            self._custom_transforms.get(transform_name) or
            self._builtin_transforms.get(transform_name)
        )
        if not transform_func:
            raise ValueError(f"Unknown transform: {transform_name}")

        result = transform_func(value, config or {}, data or {}, context or {})

        steps = []
        if transform_name != TransformType.DIRECT.value:
            steps.append(TransformationStep(
                step=1,
                transform=transform_name,
                before_hash=value_hash(value),
                after_hash=value_hash(result),
            ))
        return result, steps

    # =========================================================================
    # Built-in transforms
    # =========================================================================

    def _transform_direct(self, value: Any, config: Dict, data: Dict, ctx: Dict) -> Any:
        """Direct copy without transformation."""
        return value

    def _transform_trim(self, value: Any, config: Dict, data: Dict, ctx: Dict) -> Any:
        if isinstance(value, str):
            return value.strip()
        return value

    def _transform_uppercase(self, value: Any, config: Dict, data: Dict, ctx: Dict) -> Any:
        """Convert string to uppercase."""
        if isinstance(value, str):
            return value.strip().upper()
        return value

    def _transform_lowercase(self, value: Any, config: Dict, data: Dict, ctx: Dict) -> Any:
        """Convert string to lowercase."""
        if isinstance(value, str):
            return value.strip().lower()
        return value

    def _transform_normalize_phone(self, value: Any, config: Dict, data: Dict, ctx: Dict) -> Any:
        """Normalize a phone number to E.164 (+15551234567)."""
        if value is None:
            return None

        raw = str(value).strip()
        digits = re.sub(r"\D", "", raw)
        country = str(config.get("country_code", self.default_country_code))

        if raw.startswith("+") and 8 <= len(digits) <= 15:
            return f"+{digits}"
        if len(digits) == 10:
            return f"+{country}{digits}"
        if len(digits) == len(country) + 10 and digits.startswith(country):
            return f"+{digits}"

        # Left as-is so validation reports it
        return raw

    def _transform_date_to_iso(self, value: Any, config: Dict, data: Dict, ctx: Dict) -> Any:
        """Convert a date in any common format to YYYY-MM-DD."""
        if value is None:
            return None

        raw = str(value).strip()
        if re.fullmatch(r"\d{4}-\d{2}-\d{2}", raw):
            return raw

        try:
            parsed = date_parser.parse(raw, dayfirst=config.get("dayfirst", False))
        except (ValueError, OverflowError):
            logger.debug(f"Could not parse date value: {raw!r}")
            return raw

        return parsed.date().isoformat()

    def _split_name(self, value: Any) -> Tuple[str, str]:
        raw = str(value).strip()
        if "," in raw:
            last, _, first = raw.partition(",")
            first_parts = first.strip().split()
            return (first_parts[0] if first_parts else ""), last.strip()
        parts = raw.split()
        if len(parts) == 1:
            return parts[0], ""
        return parts[0], parts[-1]

    def _transform_parse_name_first(self, value: Any, config: Dict, data: Dict, ctx: Dict) -> Any:
        """Extract the first name from "Last, First" or "First Last"."""
        if value is None:
            return None
        first, _ = self._split_name(value)
        return first or None

    def _transform_parse_name_last(self, value: Any, config: Dict, data: Dict, ctx: Dict) -> Any:
        """Extract the last name from "Last, First" or "First Last"."""
        if value is None:
            return None
        _, last = self._split_name(value)
        return last or None

    def _transform_state_to_code(self, value: Any, config: Dict, data: Dict, ctx: Dict) -> Any:
        """Convert a US state name to its two-letter code."""
        if value is None:
            return None

        raw = str(value).strip()
        if raw.upper() in STATE_CODES:
            return raw.upper()
        return US_STATES.get(raw.lower(), raw)

    def _transform_to_number(self, value: Any, config: Dict, data: Dict, ctx: Dict) -> Any:
        """Coerce currency, percentage and plain numerics to a number."""
        if value is None or isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            return value

        cleaned = re.sub(r"[$,%\s]", "", str(value))
        try:
            number = float(cleaned)
        except ValueError:
            return value
        return int(number) if number.is_integer() and "." not in cleaned else number

    def _transform_to_boolean(self, value: Any, config: Dict, data: Dict, ctx: Dict) -> Any:
        """Coerce yes/no style values to a boolean."""
        if value is None or isinstance(value, bool):
            return value

        lowered = str(value).strip().lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
        return value

    def _transform_digits_only(self, value: Any, config: Dict, data: Dict, ctx: Dict) -> Any:
        if value is None:
            return None
        return re.sub(r"\D", "", str(value)) or None
