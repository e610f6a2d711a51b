"""
Write-time value coercion.

The server describes value types only on read. To write a value back the
client has to replay the exact variant type the controller expects; this
module maps the category recorded at discovery time, plus the built-in data
type code for numbers, to an asyncua VariantType and converts the proposed
value into it.
"""

from dataclasses import fields, is_dataclass
from typing import Any, Awaitable, Callable, Mapping, Optional
import math

from asyncua import ua

from ..errors import InvalidValueError, UnsupportedTypeError
from ..logging import SupervisorLogger, get_logger
from .models import ValueCategory, WireValue


RecordFactory = Callable[[Optional[ua.NodeId], dict], Awaitable[Any]]


class TypeCoercer:
    """
    Converts proposed values into typed wire values.

    Dispatch is a total match over ValueCategory:
    - BOOLEAN: passthrough as Boolean
    - RECORD: shallow merge into the last known value, then build the
      typed structure through the record factory
    - NUMERIC: variant type chosen by the built-in data type code
    - OTHER: rejected
    """

    # Built-in data type code -> variant type
    NUMERIC_WIRE_TYPES: dict[int, ua.VariantType] = {
        2: ua.VariantType.SByte,
        3: ua.VariantType.Byte,
        4: ua.VariantType.Int16,
        5: ua.VariantType.UInt16,
        6: ua.VariantType.Int32,
        7: ua.VariantType.UInt32,
        8: ua.VariantType.Int64,
        9: ua.VariantType.UInt64,
        10: ua.VariantType.Float,
        11: ua.VariantType.Double,
    }

    FLOAT_TYPES = (ua.VariantType.Float, ua.VariantType.Double)

    INTEGER_RANGES: dict[ua.VariantType, tuple[int, int]] = {
        ua.VariantType.SByte: (-(1 << 7), (1 << 7) - 1),
        ua.VariantType.Byte: (0, (1 << 8) - 1),
        ua.VariantType.Int16: (-(1 << 15), (1 << 15) - 1),
        ua.VariantType.UInt16: (0, (1 << 16) - 1),
        ua.VariantType.Int32: (-(1 << 31), (1 << 31) - 1),
        ua.VariantType.UInt32: (0, (1 << 32) - 1),
        ua.VariantType.Int64: (-(1 << 63), (1 << 63) - 1),
        ua.VariantType.UInt64: (0, (1 << 64) - 1),
    }

    FLOAT32_MAX = 3.4028234663852886e38

    def __init__(
        self,
        record_factory: Optional[RecordFactory] = None,
        logger: Optional[SupervisorLogger] = None
    ):
        """
        Initialize the coercer.

        Args:
            record_factory: Coroutine building a typed structure from its
                data type id and field values (usually the session's
                construct_typed_record)
            logger: Component logger
        """
        self.record_factory = record_factory
        self.logger = logger or get_logger("coercer")

    @classmethod
    def wire_type_for(
        cls,
        category: ValueCategory,
        type_code: Optional[int] = None
    ) -> ua.VariantType:
        """
        Get the variant type used to write a value of this kind.

        Raises:
            UnsupportedTypeError: If no rule covers the category/code pair
        """
        if category == ValueCategory.BOOLEAN:
            return ua.VariantType.Boolean
        if category == ValueCategory.RECORD:
            return ua.VariantType.ExtensionObject
        if category == ValueCategory.NUMERIC:
            if type_code in cls.NUMERIC_WIRE_TYPES:
                return cls.NUMERIC_WIRE_TYPES[type_code]
            raise UnsupportedTypeError(
                f"Unsupported numeric data type code: {type_code}",
                category=category,
                type_code=type_code,
            )
        raise UnsupportedTypeError(
            f"Unsupported value category: {category.value}",
            category=category,
            type_code=type_code,
        )

    async def coerce(
        self,
        category: ValueCategory,
        proposed: Any,
        type_code: Optional[int] = None,
        last_value: Any = None,
        data_type_id: Optional[ua.NodeId] = None
    ) -> WireValue:
        """
        Convert a proposed value to its wire representation.

        Args:
            category: Category recorded when the node was discovered
            proposed: Value requested by the caller
            type_code: Built-in data type code (numeric values)
            last_value: Last known value (structured values)
            data_type_id: Declared structure type (structured values)

        Returns:
            WireValue ready for Session.write

        Raises:
            UnsupportedTypeError: No rule for the category/code pair
            InvalidValueError: Proposed value cannot be parsed
        """
        variant_type = self.wire_type_for(category, type_code)

        if category == ValueCategory.BOOLEAN:
            return WireValue(variant_type, self._convert_bool(proposed))

        if category == ValueCategory.RECORD:
            record = await self._build_record(last_value, proposed, data_type_id)
            return WireValue(variant_type, record)

        if variant_type in self.FLOAT_TYPES:
            return WireValue(variant_type, self._parse_float(proposed, variant_type))

        return WireValue(variant_type, self._parse_int(proposed, variant_type))

    async def _build_record(
        self,
        last_value: Any,
        proposed: Any,
        data_type_id: Optional[ua.NodeId]
    ) -> Any:
        """Merge proposed fields into the last value and build the structure."""
        if self.record_factory is None:
            raise UnsupportedTypeError(
                "No record factory available for structured values",
                category=ValueCategory.RECORD,
            )

        merged = self._record_fields(last_value)
        merged.update(self._record_fields(proposed, strict=True))

        self.logger.debug(f"Building record {data_type_id} with fields {sorted(merged)}")
        return await self.record_factory(data_type_id, merged)

    @classmethod
    def _record_fields(cls, value: Any, strict: bool = False) -> dict:
        """Shallow copy of a structure's fields."""
        if value is None and not strict:
            return {}
        if is_dataclass(value) and not isinstance(value, type):
            return {f.name: getattr(value, f.name) for f in fields(value)}
        if isinstance(value, Mapping):
            return dict(value)
        if strict:
            raise InvalidValueError(
                f"Structured write expects a mapping of fields, got {type(value).__name__}",
                value=value,
                variant_type=ua.VariantType.ExtensionObject,
            )
        return {}

    @classmethod
    def _convert_bool(cls, value: Any) -> bool:
        """Convert any value to boolean."""
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            return value != 0
        if isinstance(value, str):
            return value.strip().lower() in ('true', '1', 'yes', 'on')
        return bool(value)

    @classmethod
    def _parse_float(cls, value: Any, variant_type: ua.VariantType) -> float:
        """Parse a float, rejecting values outside the 32-bit range for Float."""
        try:
            if isinstance(value, str):
                value = value.strip()
            result = float(value)
        except (TypeError, ValueError):
            raise InvalidValueError(
                f"Cannot parse {value!r} as {variant_type.name}",
                value=value,
                variant_type=variant_type,
            )

        if (variant_type == ua.VariantType.Float
                and math.isfinite(result) and abs(result) > cls.FLOAT32_MAX):
            raise InvalidValueError(
                f"Value {result} out of range for Float",
                value=value,
                variant_type=variant_type,
            )
        return result

    @classmethod
    def _parse_int(cls, value: Any, variant_type: ua.VariantType) -> int:
        """Parse an integer leniently ("5.7" -> 5) and check its range."""
        result: Optional[int] = None

        if isinstance(value, bool):
            result = int(value)
        elif isinstance(value, int):
            result = value
        elif isinstance(value, float):
            if math.isfinite(value):
                result = int(value)
        elif isinstance(value, str):
            text = value.strip()
            try:
                result = int(text, 10)
            except ValueError:
                try:
                    as_float = float(text)
                except ValueError:
                    as_float = math.nan
                if math.isfinite(as_float):
                    result = int(as_float)

        if result is None:
            raise InvalidValueError(
                f"Cannot parse {value!r} as {variant_type.name}",
                value=value,
                variant_type=variant_type,
            )

        min_val, max_val = cls.INTEGER_RANGES[variant_type]
        if not min_val <= result <= max_val:
            raise InvalidValueError(
                f"Value {result} out of range for {variant_type.name}",
                value=value,
                variant_type=variant_type,
            )
        return result
