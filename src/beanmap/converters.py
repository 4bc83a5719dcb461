from __future__ import annotations

import time as _time
from abc import ABC, abstractmethod
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from enum import Enum
from inspect import isclass
from typing import Any, Dict, Iterable, Optional, Sequence, Tuple
from uuid import UUID

from beanmap.config import ConverterBinding, FieldMapping, TypeMapping
from beanmap.errors import ConfigurationError, MappingError
from beanmap.stats import MetricsSink, StatisticType

PRIMITIVE_TYPES: Tuple[type, ...] = (
    str,
    bytes,
    int,
    float,
    complex,
    bool,
    Decimal,
    date,
    time,
    timedelta,
    UUID,
)

_TRUE_STRINGS = {"true", "yes", "y", "on", "1"}
_FALSE_STRINGS = {"false", "no", "n", "off", "0", ""}


def is_primitive(cls: Optional[type]) -> bool:
    return isclass(cls) and issubclass(cls, PRIMITIVE_TYPES)


def is_enum(cls: Optional[type]) -> bool:
    return isclass(cls) and issubclass(cls, Enum)


class CustomConverter(ABC):
    """User-supplied conversion for a pair of types.

    ``existing_destination`` is the value already present at the destination
    (the target object itself for a top-level conversion), so converters can
    merge instead of replace.
    """

    @abstractmethod
    def convert(
        self,
        existing_destination: Any,
        source: Any,
        destination_type: type,
        source_type: type,
    ) -> Any: ...


class ConfigurableCustomConverter(ABC):
    """A converter that also receives the field's ``custom_converter_param``."""

    @abstractmethod
    def convert(
        self,
        existing_destination: Any,
        source: Any,
        destination_type: type,
        source_type: type,
        parameter: Optional[str],
    ) -> Any: ...


class PrimitiveConverter:
    """Converts between primitive/wrapper values, dates and enums."""

    def convert(
        self, value: Any, destination_type: type, date_format: Optional[str] = None
    ) -> Any:
        if value is None:
            return None
        if destination_type is object:
            return value
        if is_enum(destination_type):
            return self._to_enum(value, destination_type)
        if type(value) is destination_type:
            return value
        if issubclass(destination_type, str):
            return destination_type(self._to_string(value, date_format))
        if issubclass(destination_type, bool):
            return self._to_bool(value)
        if issubclass(destination_type, datetime):
            return self._to_datetime(value, date_format)
        if issubclass(destination_type, date):
            if isinstance(value, datetime):
                return value.date()
            if isinstance(value, date):
                return value
            return self._to_datetime(value, date_format).date()
        if issubclass(destination_type, time):
            if isinstance(value, datetime):
                return value.time()
            if date_format:
                return datetime.strptime(str(value), date_format).time()
            return time.fromisoformat(str(value))
        if issubclass(destination_type, int):
            if isinstance(value, Enum):
                return destination_type(value.value)
            if isinstance(value, str):
                return destination_type(value.strip())
            return destination_type(value)
        if issubclass(destination_type, Decimal):
            return destination_type(str(value))
        if issubclass(destination_type, bytes):
            return value.encode() if isinstance(value, str) else destination_type(value)
        if issubclass(destination_type, UUID):
            return value if isinstance(value, UUID) else UUID(str(value))
        if isinstance(value, destination_type):
            return value
        return destination_type(value)

    @staticmethod
    def _to_string(value: Any, date_format: Optional[str]) -> str:
        if isinstance(value, Enum):
            return value.name
        if date_format and isinstance(value, (date, time)):
            return value.strftime(date_format)
        if isinstance(value, (date, time)):
            return value.isoformat()
        if isinstance(value, bytes):
            return value.decode()
        return str(value)

    @staticmethod
    def _to_bool(value: Any) -> bool:
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in _TRUE_STRINGS:
                return True
            if lowered in _FALSE_STRINGS:
                return False
            raise ValueError(f"Cannot convert {value!r} to bool")
        return bool(value)

    @staticmethod
    def _to_datetime(value: Any, date_format: Optional[str]) -> datetime:
        if isinstance(value, datetime):
            return value
        if isinstance(value, date):
            return datetime(value.year, value.month, value.day)
        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(value)
        if date_format:
            return datetime.strptime(str(value), date_format)
        return datetime.fromisoformat(str(value))

    @staticmethod
    def _to_enum(value: Any, enum_type: type) -> Enum:
        if isinstance(value, enum_type):
            return value
        if isinstance(value, Enum):
            return enum_type[value.name]
        if isinstance(value, str) and value in enum_type.__members__:
            return enum_type[value]
        return enum_type(value)


class ConverterDispatcher:
    """Finds and runs custom converters.

    Class-level bindings come from the TypeMapping first, then from the
    mapper-wide ``bindings``. Field-level converters are looked up by id
    among ``converters_by_id`` or by class among ``instances``.
    """

    def __init__(
        self,
        metrics: MetricsSink,
        instances: Iterable[Any] = (),
        converters_by_id: Optional[Dict[str, Any]] = None,
        bindings: Sequence[ConverterBinding] = (),
    ) -> None:
        self.metrics = metrics
        self.instances = list(instances)
        self.converters_by_id = dict(converters_by_id or {})
        self.bindings = tuple(bindings)
        self._cache: Dict[Tuple[Any, ...], Optional[type]] = {}

    def find_class_converter(
        self,
        type_mapping: TypeMapping,
        source_type: Optional[type],
        destination_type: Optional[type],
    ) -> Optional[type]:
        if source_type is None or destination_type is None:
            return None
        bindings = type_mapping.converters + self.bindings
        if not bindings:
            return None
        key = (bindings, source_type, destination_type)
        if key not in self._cache:
            self._cache[key] = next(
                (
                    binding.converter
                    for binding in bindings
                    if binding.matches(source_type, destination_type)
                ),
                None,
            )
        return self._cache[key]

    def find_field_converter(
        self,
        type_mapping: TypeMapping,
        field_mapping: FieldMapping,
        source_type: Optional[type],
        destination_type: Optional[type],
    ) -> Optional[type]:
        if field_mapping.destination_hints and source_type is not None:
            destination_type = field_mapping.destination_hint_for(source_type)
        return self.find_class_converter(type_mapping, source_type, destination_type)

    def by_id(self, converter_id: str) -> Any:
        if converter_id not in self.converters_by_id:
            raise ConfigurationError(f"CustomConverter instance not found with id: {converter_id}")
        return self.converters_by_id[converter_id]

    def by_type(self, converter_class: Any) -> Any:
        if not isclass(converter_class):
            return converter_class
        for instance in self.instances:
            if type(instance) is converter_class:
                return instance
        return converter_class()

    def invoke(
        self,
        converter: Any,
        source_type: type,
        source_value: Any,
        destination_type: type,
        existing_value: Any,
        field_mapping: Optional[FieldMapping] = None,
    ) -> Any:
        if source_value is None and field_mapping is not None and not field_mapping.map_null:
            return None

        start = _time.perf_counter()
        if isinstance(converter, ConfigurableCustomConverter):
            parameter = field_mapping.custom_converter_param if field_mapping else None
            result = converter.convert(
                existing_value, source_value, destination_type, source_type, parameter
            )
        elif isinstance(converter, CustomConverter):
            result = converter.convert(
                existing_value, source_value, destination_type, source_type
            )
        else:
            raise MappingError(
                f"Custom converter {type(converter).__name__} does not implement CustomConverter"
            )
        elapsed_ms = (_time.perf_counter() - start) * 1000

        self.metrics.increment(StatisticType.CUSTOM_CONVERTER_SUCCESS_COUNT)
        self.metrics.increment(StatisticType.CUSTOM_CONVERTER_TIME, elapsed_ms)
        return result
