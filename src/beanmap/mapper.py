from __future__ import annotations

from collections.abc import Iterable, Mapping
from inspect import isclass
from typing import (
    Any,
    Callable,
    Dict,
    List,
    NoReturn,
    Optional,
    Sequence,
    Set,
    Type,
    TypeVar,
    Union,
)

import structlog

from beanmap.accessors import Accessor, ObjectAccessor
from beanmap.config import (
    ConverterBinding,
    FieldKind,
    FieldMapping,
    MapperSettings,
    TypeMapping,
)
from beanmap.converters import ConverterDispatcher, is_primitive
from beanmap.errors import MappingError, ValidationError
from beanmap.events import EventListener, EventManager, EventType, MappingEvent
from beanmap.factory import DefaultDestinationFactory, DestinationFactory
from beanmap.fields import CustomFieldMapper, FieldOutcome, FieldProcessor
from beanmap.registry import DefaultMappingProvider, TypeMappingRegistry, TypeMappingResolver
from beanmap.session import MappingSession
from beanmap.stats import MetricsSink, StatisticsManager, StatisticType

logger = structlog.get_logger(__name__)

TS = TypeVar("TS")
TT = TypeVar("TT")

FieldSpec = Union[str, Dict[str, Any], FieldMapping]
FieldsSpec = Union[Mapping, Set[str], Sequence[Union[str, FieldMapping]]]


class Mapper:
    """Recursive object graph mapper.

    Mappings are looked up per (source type, destination type, map id) pair.
    Pairs without an explicit mapping get a default one that matches fields
    by name. Every top-level ``map`` call runs in its own MappingSession, so
    a mapper can be shared between threads.
    """

    def __init__(
        self,
        *,
        settings: Optional[MapperSettings] = None,
        registry: Optional[TypeMappingRegistry] = None,
        accessor: Optional[Accessor] = None,
        factory: Optional[DestinationFactory] = None,
        default_mappings: Optional[DefaultMappingProvider] = None,
        converter_instances: Sequence[Any] = (),
        converters_by_id: Optional[Dict[str, Any]] = None,
        converter_bindings: Sequence[ConverterBinding] = (),
        event_listeners: Sequence[EventListener] = (),
        field_mapper: Optional[CustomFieldMapper] = None,
        metrics: Optional[MetricsSink] = None,
        factories: Optional[Dict[str, Callable[..., Any]]] = None,
    ) -> None:
        self.settings = settings or MapperSettings()
        self.accessor = accessor or ObjectAccessor()
        self.registry = registry if registry is not None else TypeMappingRegistry()
        self.default_mappings = default_mappings or DefaultMappingProvider(
            self.accessor, self.settings
        )
        self.resolver = TypeMappingResolver(self.registry, self.default_mappings)
        self.factory = factory or DefaultDestinationFactory(self.accessor, factories)
        self.metrics = metrics or StatisticsManager(self.settings.statistics_enabled)
        self.events = EventManager(event_listeners)
        self.converters = ConverterDispatcher(
            self.metrics, converter_instances, converters_by_id, converter_bindings
        )
        self.processor = FieldProcessor(
            self, self.accessor, self.converters, self.events, self.metrics, field_mapper
        )

    def add_mapping(
        self,
        *,
        source: Type[TS],
        target: Type[TT],
        fields: Optional[FieldsSpec] = None,
        exclusions: Optional[Set[str]] = None,
        map_id: Optional[str] = None,
        converters: Optional[Sequence[Any]] = None,
        allowed_exceptions: Optional[Sequence[Type[BaseException]]] = None,
        wildcard: Optional[bool] = None,
        bidirectional: bool = False,
        factory: Optional[Callable[..., Any]] = None,
        factory_id: Optional[str] = None,
        create_method: Optional[str] = None,
        **policies: Any,
    ) -> TypeMapping:
        """Register an explicit mapping from ``source`` to ``target``.

        Args:
            source: Source class.
            target: Destination class.
            fields: ``{source_field: destination_field}``, a set of names mapped
                to themselves, or FieldMapping objects. A dict value may also be
                a dict of FieldMapping options.
            exclusions: Destination fields that are never written.
            map_id: Register under this id instead of the default slot.
            converters: ConverterBinding objects, or converter classes bound to
                the ``(source, target)`` pair.
            allowed_exceptions: Exception types that always propagate as they are.
            wildcard: Also map same-named fields not listed in ``fields``.
            bidirectional: Also register the mirrored mapping.
            policies: Type-level policies such as ``stop_on_errors`` or
                ``relationship``.
        """
        fields = fields or {}
        self._guard_source_has_all_attrs_specified_in_mapping(source, fields)

        field_mappings = self._build_field_mappings(fields)
        field_mappings.extend(
            FieldMapping(source=name, destination=name, kind=FieldKind.EXCLUDED)
            for name in sorted(exclusions or ())
        )

        wildcard = self.settings.wildcard if wildcard is None else wildcard
        if wildcard:
            mentioned = {fm.source for fm in field_mappings} | {
                fm.destination for fm in field_mappings
            }
            field_mappings.extend(
                self.default_mappings.field_mappings(source, target, skip=tuple(mentioned))
            )

        type_mapping = TypeMapping(
            source_type=source,
            destination_type=target,
            map_id=map_id,
            field_mappings=tuple(field_mappings),
            converters=tuple(self._build_bindings(source, target, converters or ())),
            allowed_exceptions=tuple(allowed_exceptions or ()),
            factory=factory,
            factory_id=factory_id,
            create_method=create_method,
            **{**self.settings.type_mapping_defaults(), **policies, "wildcard": wildcard},
        )
        self.register(type_mapping)
        if bidirectional:
            self.register(type_mapping.reverse())
        return type_mapping

    def register(self, type_mapping: TypeMapping) -> TypeMapping:
        self.registry.put(type_mapping)
        logger.debug(
            "type_mapping_registered",
            source_type=type_mapping.source_type.__name__,
            destination_type=type_mapping.destination_type.__name__,
            map_id=type_mapping.map_id,
        )
        return type_mapping

    def map(
        self,
        source: TS,
        target: Union[TT, Type[TT]],
        map_id: Optional[str] = None,
    ) -> TT:
        """Map ``source`` to a new instance of ``target``, or into ``target``.

        Args:
            source: Object to map from.
            target: Destination class, or an existing destination instance
                that is updated in place.
            map_id: Use the mapping registered under this id.
        """
        if source is None:
            raise ValidationError("Source object must not be None")
        if target is None:
            raise ValidationError("Destination must not be None")

        session = MappingSession()
        source_type = type(source)
        destination_type = target if isclass(target) else type(target)
        destination = None if isclass(target) else target
        type_mapping: Optional[TypeMapping] = None

        try:
            type_mapping = self.resolver.resolve(source_type, destination_type, map_id)
            converter = self.converters.find_class_converter(
                type_mapping, source_type, destination_type
            )
            if converter is not None:
                self._fire(EventType.MAPPING_STARTED, type_mapping, source, destination)
                destination = self.converters.invoke(
                    self.converters.by_type(converter),
                    source_type,
                    source,
                    destination_type,
                    destination,
                )
            else:
                if destination is None:
                    destination = self._create(source, type_mapping, destination_type)
                self._fire(EventType.MAPPING_STARTED, type_mapping, source, destination)
                destination = self.merge_into(
                    session, type_mapping, source, destination, False, map_id
                )
        except MappingError:
            self.metrics.increment(StatisticType.MAPPING_FAILURE_COUNT)
            raise
        except Exception as e:
            self.metrics.increment(StatisticType.MAPPING_FAILURE_COUNT)
            if session.is_propagating(e):
                raise
            raise MappingError(
                f"Failed to map {source_type.__name__} -> {destination_type.__name__}: {e}"
            ) from e

        self._fire(EventType.MAPPING_FINISHED, type_mapping, source, destination)
        self.metrics.increment(StatisticType.MAPPING_SUCCESS_COUNT)
        return destination

    def map_all(
        self,
        sources: Iterable,
        target: Type[TT],
        map_id: Optional[str] = None,
    ) -> List[TT]:
        return [self.map(source, target, map_id) for source in sources]

    def merge_into(
        self,
        session: MappingSession,
        type_mapping: Optional[TypeMapping],
        source: Any,
        destination: Any,
        bypass_super_mappings: bool,
        map_id: Optional[str],
    ) -> Any:
        """Copy ``source`` fields into ``destination`` and return the result.

        Mappings of ancestor types run first. A destination field written by
        one of them is skipped by the more specific mapping.
        """
        session.record(source, destination)
        if type_mapping is None:
            type_mapping = self.resolver.resolve(type(source), type(destination), map_id)

        converter = self.converters.find_class_converter(
            type_mapping, type(source), type(destination)
        )
        if converter is not None:
            return self.converters.invoke(
                self.converters.by_type(converter),
                type(source),
                source,
                type(destination),
                destination,
            )

        claimed: Set[str] = set()
        if not bypass_super_mappings:
            for ancestor in self.resolver.resolve_ancestor_chain(type(source), type(destination)):
                self.merge_into(session, ancestor, source, destination, True, map_id)
                claimed.update(fm.destination for fm in ancestor.field_mappings)

        for field_mapping in type_mapping.field_mappings:
            if field_mapping.destination in claimed:
                continue
            outcome = self.processor.process(
                session, type_mapping, field_mapping, source, destination
            )
            if outcome.failed:
                self._handle_field_failure(session, type_mapping, outcome, source, destination)
        return destination

    def map_nested(
        self,
        session: MappingSession,
        field_mapping: FieldMapping,
        destination_obj: Any,
        destination_type: type,
        source_value: Any,
    ) -> Any:
        """Map a custom object held by a field, reusing the destination's value."""
        if field_mapping.destination_hints:
            destination_type = field_mapping.destination_hint_for(type(source_value))
        existing = self.processor.existing_value(field_mapping, destination_obj, destination_type)
        if existing is not None:
            # Resolved against the runtime class, which may be a subclass.
            return self.merge_into(
                session, None, source_value, existing, False, field_mapping.map_id
            )
        type_mapping = self.resolver.resolve(
            type(source_value), destination_type, field_mapping.map_id
        )
        destination = self._create(
            source_value, type_mapping, destination_type, field_mapping.create_method
        )
        return self.merge_into(
            session, type_mapping, source_value, destination, False, field_mapping.map_id
        )

    def map_element(self, session: MappingSession, source: Any, destination_type: type) -> Any:
        """Map one container element to a fresh ``destination_type`` instance."""
        if source is None:
            return None
        if is_primitive(type(source)) or is_primitive(destination_type):
            return self.processor.primitives.convert(source, destination_type)
        already_mapped = session.lookup(source, destination_type)
        if already_mapped is not None:
            return already_mapped
        type_mapping = self.resolver.resolve(type(source), destination_type)
        destination = self._create(source, type_mapping, destination_type)
        return self.merge_into(session, type_mapping, source, destination, False, None)

    # region Private methods
    # These methods are not intended to be used outside of this class.

    def _create(
        self,
        source: Any,
        type_mapping: TypeMapping,
        destination_type: type,
        create_method: Optional[str] = None,
    ) -> Any:
        return self.factory.create(
            source,
            type(source),
            type_mapping.destination_type,
            destination_type,
            type_mapping.factory,
            type_mapping.factory_id,
            create_method or type_mapping.create_method,
        )

    def _handle_field_failure(
        self,
        session: MappingSession,
        type_mapping: TypeMapping,
        outcome: FieldOutcome,
        source: Any,
        destination: Any,
    ) -> None:
        cause = outcome.cause
        if session.is_propagating(cause):
            raise cause

        field_mapping = outcome.field_mapping
        logger.error(
            "field_mapping_failed",
            source_type=type(source).__name__,
            destination_type=type(destination).__name__,
            source_field=field_mapping.source,
            destination_field=field_mapping.destination,
            source_value=repr(outcome.source_value),
            map_id=type_mapping.map_id,
            error=str(cause),
            exc_info=cause,
        )
        self.metrics.increment(StatisticType.FIELD_MAPPING_FAILURE_COUNT)

        if type_mapping.allowed_exceptions and isinstance(cause, type_mapping.allowed_exceptions):
            session.propagate(cause)
            raise cause
        if field_mapping.stop_on_errors:
            raise outcome.as_error()
        self.metrics.increment(StatisticType.FIELD_MAPPING_FAILURE_IGNORED_COUNT)

    def _fire(
        self,
        event_type: EventType,
        type_mapping: Optional[TypeMapping],
        source: Any,
        destination: Any,
    ) -> None:
        self.events.fire(MappingEvent(event_type, type_mapping, None, source, destination))

    def _build_field_mappings(self, fields: FieldsSpec) -> List[FieldMapping]:
        if isinstance(fields, Mapping):
            return [self._build_field_mapping(name, spec) for name, spec in fields.items()]
        if isinstance(fields, (set, frozenset)):
            return [FieldMapping(source=name, destination=name) for name in sorted(fields)]
        return [
            spec if isinstance(spec, FieldMapping) else FieldMapping(source=spec, destination=spec)
            for spec in fields
        ]

    @staticmethod
    def _build_field_mapping(name: str, spec: FieldSpec) -> FieldMapping:
        if isinstance(spec, FieldMapping):
            return spec
        if isinstance(spec, str):
            return FieldMapping(source=name, destination=spec)
        if isinstance(spec, Mapping):
            return FieldMapping(**{"source": name, "destination": name, **spec})
        raise TypeError(
            f"Unsupported field specification for '{name}': {type(spec).__name__}"
        )

    @staticmethod
    def _build_bindings(
        source: type, target: type, converters: Sequence[Any]
    ) -> List[ConverterBinding]:
        return [
            converter
            if isinstance(converter, ConverterBinding)
            else ConverterBinding(
                source_type=source, destination_type=target, converter=converter
            )
            for converter in converters
        ]

    def _guard_source_has_all_attrs_specified_in_mapping(
        self, source: type, fields: FieldsSpec
    ) -> None:
        if not fields or issubclass(source, Mapping):
            return

        source_attrs_names = set(self.accessor.field_names(source)) | {
            name for name in dir(source) if not name.startswith("_")
        }
        missing_attributes = {
            name
            for name in self._get_mapping_attrs_names(fields)
            if name.split(".")[0] not in source_attrs_names
        }
        if missing_attributes:
            self._raise_missing_attrs_error(source, missing_attributes)

    def _get_mapping_attrs_names(self, fields: FieldsSpec) -> Set[str]:
        if isinstance(fields, Mapping):
            return {
                name
                for name, spec in fields.items()
                if not (isinstance(spec, FieldMapping) and spec.source_get_method)
            }
        return {
            spec.source if isinstance(spec, FieldMapping) else spec
            for spec in fields
            if not (isinstance(spec, FieldMapping) and spec.source_get_method)
        }

    def _raise_missing_attrs_error(self, source: type, missing_attributes: Set[str]) -> NoReturn:
        sorted_missing_attributes = sorted(missing_attributes)
        if len(sorted_missing_attributes) <= 1:
            attributes_string = f"attribute {''.join(sorted_missing_attributes)}"
        else:
            attributes_string = (
                f"attributes {', '.join(sorted_missing_attributes[:-1])} "
                f"and {sorted_missing_attributes[-1]}"
            )
        raise TypeError(f"Mapping {attributes_string} not found in source {source.__name__}.")

    # endregion
