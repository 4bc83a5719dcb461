from __future__ import annotations

import collections.abc
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional, Protocol, runtime_checkable

import structlog

from beanmap.accessors import Accessor
from beanmap.config import FieldKind, FieldMapping, TypeMapping
from beanmap.containers import (
    CollectionAdapter,
    is_container,
    is_supported_collection,
    is_supported_map,
)
from beanmap.converters import ConverterDispatcher, PrimitiveConverter, is_enum, is_primitive
from beanmap.errors import ConfigurationError, ConversionError, MappingError
from beanmap.events import EventManager, EventType, MappingEvent
from beanmap.session import MappingSession
from beanmap.stats import MetricsSink, StatisticType

if TYPE_CHECKING:
    from beanmap.mapper import Mapper

logger = structlog.get_logger(__name__)


@runtime_checkable
class CustomFieldMapper(Protocol):
    """Gets first refusal on every field. Return True when the field was handled."""

    def map_field(
        self,
        source: Any,
        destination: Any,
        source_value: Any,
        type_mapping: TypeMapping,
        field_mapping: FieldMapping,
    ) -> bool: ...


@dataclass(frozen=True)
class FieldOutcome:
    field_mapping: FieldMapping
    source_value: Any = None
    error: Optional[BaseException] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    @property
    def cause(self) -> Optional[BaseException]:
        if isinstance(self.error, MappingError):
            return self.error.root_cause
        return self.error

    def as_error(self) -> MappingError:
        if isinstance(self.error, MappingError):
            return self.error
        return ConversionError(
            f"Failed to map field {self.field_mapping.source} -> "
            f"{self.field_mapping.destination}: {self.error}",
            self.error,
        )


class FieldProcessor:
    """Computes and writes one destination field.

    ``process`` never raises: failures are returned in the FieldOutcome and
    the mapper decides whether they stop the mapping.
    """

    def __init__(
        self,
        mapper: "Mapper",
        accessor: Accessor,
        converters: ConverterDispatcher,
        events: EventManager,
        metrics: MetricsSink,
        field_mapper: Optional[CustomFieldMapper] = None,
    ) -> None:
        self.mapper = mapper
        self.accessor = accessor
        self.converters = converters
        self.events = events
        self.metrics = metrics
        self.field_mapper = field_mapper
        self.primitives = PrimitiveConverter()
        self.collections = CollectionAdapter(self)

    def process(
        self,
        session: MappingSession,
        type_mapping: TypeMapping,
        field_mapping: FieldMapping,
        source: Any,
        destination: Any,
    ) -> FieldOutcome:
        if field_mapping.kind is FieldKind.EXCLUDED:
            return FieldOutcome(field_mapping)

        source_value = None
        try:
            source_value = self.accessor.read(
                source, field_mapping.source, field_mapping.source_get_method
            )
            handled = self.field_mapper is not None and self.field_mapper.map_field(
                source, destination, source_value, type_mapping, field_mapping
            )
            if not handled:
                if field_mapping.kind is FieldKind.ITERATE:
                    self._map_iterate(
                        session, type_mapping, field_mapping, source, destination, source_value
                    )
                else:
                    self._map_field(
                        session, type_mapping, field_mapping, source, destination, source_value
                    )
        except Exception as e:
            return FieldOutcome(field_mapping, source_value, e)

        self.metrics.increment(StatisticType.FIELD_MAPPING_SUCCESS_COUNT)
        return FieldOutcome(field_mapping, source_value)

    def map_or_recurse(
        self,
        session: MappingSession,
        type_mapping: TypeMapping,
        source_obj: Any,
        source_value: Any,
        destination_type: Optional[type],
        field_mapping: FieldMapping,
        destination_obj: Any,
    ) -> Any:
        source_class = self._source_class(source_obj, source_value, field_mapping)
        if is_supported_collection(source_class) or is_supported_map(source_class):
            # Hints name element types, not the container.
            converter = self.converters.find_class_converter(
                type_mapping, source_class, destination_type
            )
        else:
            converter = self.converters.find_field_converter(
                type_mapping, field_mapping, source_class, destination_type
            )
        # Converters also run for None source values.
        if converter is not None:
            return self._convert(
                self.converters.by_type(converter), source_class, source_value,
                destination_type, destination_obj, field_mapping,
            )

        if source_value is None:
            return None
        if destination_type is None:
            destination_type = source_class

        already_mapped = session.lookup(source_value, destination_type)
        if already_mapped is not None:
            return already_mapped

        if field_mapping.copy_by_reference:
            return source_value

        if is_supported_map(source_class) and is_supported_map(destination_type):
            return self.collections.map_map(
                session, type_mapping, source_obj, source_value, field_mapping, destination_obj
            )

        if field_mapping.kind is FieldKind.MAP and destination_type is object:
            destination_type = field_mapping.element_hint or source_class

        if is_primitive(source_class) or is_primitive(destination_type):
            if field_mapping.destination_hints:
                destination_type = field_mapping.destination_hint_for(source_class)
            value = source_value
            if field_mapping.trim_strings and type(value) is str:
                value = value.strip()
            if field_mapping.kind is FieldKind.MAP and not is_primitive(destination_type):
                # Map-backed values keep their own type.
                return self.primitives.convert(value, type(value), field_mapping.date_format)
            return self.primitives.convert(value, destination_type, field_mapping.date_format)

        if is_supported_collection(source_class) and is_supported_collection(destination_type):
            return self.collections.map_collection(
                session, type_mapping, source_obj, source_value, field_mapping,
                destination_obj, destination_type,
            )

        if is_enum(source_class) and is_enum(destination_type):
            return destination_type[source_value.name]

        return self.mapper.map_nested(
            session, field_mapping, destination_obj, destination_type, source_value
        )

    def existing_value(
        self, field_mapping: FieldMapping, destination_obj: Any, destination_type: Optional[type]
    ) -> Any:
        """Current destination value, unless it cannot hold a ``destination_type``."""
        if destination_obj is None:
            return None
        value = self.accessor.read(destination_obj, field_mapping.destination)
        if value is None:
            return None
        # While recursing through a container the field holds the container,
        # not the element being mapped.
        if is_container(value) and not (
            is_supported_collection(destination_type) or is_supported_map(destination_type)
        ):
            return None
        if destination_type is not None and not isinstance(value, destination_type):
            return None
        return value

    def write(
        self,
        type_mapping: TypeMapping,
        field_mapping: FieldMapping,
        source: Any,
        destination: Any,
        value: Any,
    ) -> None:
        if value is None and not field_mapping.map_null:
            return
        if type(value) is str and value == "" and not field_mapping.map_empty_string:
            return
        if type(value) is str and field_mapping.trim_strings:
            value = value.strip()

        self.events.fire(
            MappingEvent(
                EventType.MAPPING_PRE_WRITING_DEST_VALUE, type_mapping, field_mapping,
                source, destination, value,
            )
        )
        self.accessor.write(
            destination, field_mapping.destination, value, field_mapping.destination_set_method
        )
        self.events.fire(
            MappingEvent(
                EventType.MAPPING_POST_WRITING_DEST_VALUE, type_mapping, field_mapping,
                source, destination, value,
            )
        )

    # region Private methods
    # These methods are not intended to be used outside of this class.

    def _map_field(
        self,
        session: MappingSession,
        type_mapping: TypeMapping,
        field_mapping: FieldMapping,
        source: Any,
        destination: Any,
        source_value: Any,
    ) -> None:
        destination_type = self._destination_type(field_mapping, source_value, destination)

        if field_mapping.custom_converter_id:
            converter = self.converters.by_id(field_mapping.custom_converter_id)
        elif field_mapping.custom_converter is not None:
            converter = self.converters.by_type(field_mapping.custom_converter)
        else:
            converter = None

        if converter is not None:
            value = self._convert(
                converter, self._source_class(source, source_value, field_mapping),
                source_value, destination_type, destination, field_mapping,
            )
        else:
            value = self.map_or_recurse(
                session, type_mapping, source, source_value, destination_type, field_mapping,
                destination,
            )

        self.write(type_mapping, field_mapping, source, destination, value)
        logger.debug(
            "field_mapped",
            source_type=type(source).__name__,
            destination_type=type(destination).__name__,
            source_field=field_mapping.source,
            destination_field=field_mapping.destination,
            map_id=type_mapping.map_id,
        )

    def _map_iterate(
        self,
        session: MappingSession,
        type_mapping: TypeMapping,
        field_mapping: FieldMapping,
        source: Any,
        destination: Any,
        source_value: Any,
    ) -> None:
        if source_value is None:
            return
        if not field_mapping.destination_hints:
            raise ConfigurationError(
                f"Iterate field {field_mapping.source} -> {field_mapping.destination} "
                "must have a destination type hint"
            )
        for element in list(source_value):
            hint = field_mapping.destination_hint_for(type(element))
            converter = self.converters.find_class_converter(type_mapping, type(element), hint)
            if converter is not None:
                value = self.converters.invoke(
                    self.converters.by_type(converter), type(element), element, hint, None,
                    field_mapping,
                )
            else:
                value = self.mapper.map_element(session, element, hint)
            if value is None:
                continue
            if field_mapping.destination_set_method:
                self.write(type_mapping, field_mapping, source, destination, value)
            else:
                self._append(type_mapping, field_mapping, source, destination, value)

    def _append(
        self,
        type_mapping: TypeMapping,
        field_mapping: FieldMapping,
        source: Any,
        destination: Any,
        value: Any,
    ) -> None:
        container = self.accessor.read(destination, field_mapping.destination)
        if container is None:
            self.write(type_mapping, field_mapping, source, destination, [value])
        elif isinstance(container, collections.abc.MutableSet):
            container.add(value)
        elif isinstance(container, collections.abc.MutableSequence):
            container.append(value)
        else:
            self.write(
                type_mapping, field_mapping, source, destination, type(container)([*container, value])
            )

    def _convert(
        self,
        converter: Any,
        source_class: Optional[type],
        source_value: Any,
        destination_type: Optional[type],
        destination_obj: Any,
        field_mapping: FieldMapping,
    ) -> Any:
        existing = self.existing_value(field_mapping, destination_obj, destination_type)
        return self.converters.invoke(
            converter, source_class, source_value, destination_type, existing, field_mapping
        )

    def _destination_type(
        self, field_mapping: FieldMapping, source_value: Any, destination: Any
    ) -> type:
        declared = self.accessor.declared_type(type(destination), field_mapping.destination)
        if declared is not object:
            return declared
        if field_mapping.kind is FieldKind.MAP:
            return object
        # Unannotated destination: fall back to what is there, then to the source.
        current = self.accessor.read(destination, field_mapping.destination)
        if current is not None:
            return type(current)
        if source_value is not None:
            return type(source_value)
        return object

    def _source_class(
        self, source_obj: Any, source_value: Any, field_mapping: FieldMapping
    ) -> Optional[type]:
        if source_value is not None:
            return type(source_value)
        declared = self.accessor.declared_type(type(source_obj), field_mapping.source)
        return None if declared is object else declared

    # endregion
