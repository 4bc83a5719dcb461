from __future__ import annotations

import collections.abc
from typing import (
    Dict,
    Generic,
    List,
    Optional,
    Protocol,
    Tuple,
    runtime_checkable,
)

import structlog

from beanmap.accessors import Accessor
from beanmap.config import FieldKind, FieldMapping, MapperSettings, MappingKey, TypeMapping
from beanmap.errors import ConfigurationError

logger = structlog.get_logger(__name__)

_ROOT_TYPES = (object, Generic)


@runtime_checkable
class TypeMappingProvider(Protocol):
    def synthesize(self, source_type: type, destination_type: type) -> TypeMapping: ...


class TypeMappingRegistry:
    """Shared store of TypeMappings keyed by (source, destination, map id).

    Safe to share between threads: inserts use ``dict.setdefault`` and the
    chain cache tolerates concurrent writers (last write wins).
    """

    def __init__(self) -> None:
        self._mappings: Dict[MappingKey, TypeMapping] = {}
        self._chains: Dict[Tuple[type, type], Tuple[TypeMapping, ...]] = {}

    def __len__(self) -> int:
        return len(self._mappings)

    def __contains__(self, key: MappingKey) -> bool:
        return key in self._mappings

    def get(
        self, source_type: type, destination_type: type, map_id: Optional[str] = None
    ) -> Optional[TypeMapping]:
        return self._mappings.get(MappingKey(source_type, destination_type, map_id))

    def put(self, mapping: TypeMapping) -> None:
        self._mappings[mapping.key] = mapping
        self._chains.clear()

    def put_if_absent(self, mapping: TypeMapping) -> TypeMapping:
        return self._mappings.setdefault(mapping.key, mapping)

    def explicit_mappings(self) -> List[TypeMapping]:
        return [mapping for mapping in list(self._mappings.values()) if not mapping.synthesized]

    def cached_chain(self, key: Tuple[type, type]) -> Optional[Tuple[TypeMapping, ...]]:
        return self._chains.get(key)

    def cache_chain(self, key: Tuple[type, type], chain: Tuple[TypeMapping, ...]) -> None:
        self._chains[key] = chain


class DefaultMappingProvider:
    """Builds a TypeMapping by matching field names of both types."""

    def __init__(self, accessor: Accessor, settings: Optional[MapperSettings] = None) -> None:
        self.accessor = accessor
        self.settings = settings or MapperSettings()

    def field_mappings(
        self, source_type: type, destination_type: type, skip: Tuple[str, ...] = ()
    ) -> List[FieldMapping]:
        source_is_map = issubclass(source_type, collections.abc.Mapping)
        destination_is_map = issubclass(destination_type, collections.abc.Mapping)
        source_names = self.accessor.field_names(source_type)
        destination_names = self.accessor.field_names(destination_type)

        if source_is_map and destination_is_map:
            return []
        if destination_is_map:
            names, kind = source_names, FieldKind.MAP
        elif source_is_map:
            names, kind = destination_names, FieldKind.MAP
        else:
            names = [name for name in destination_names if name in source_names]
            kind = FieldKind.PLAIN
        return [
            FieldMapping(source=name, destination=name, kind=kind)
            for name in names
            if name not in skip
        ]

    def synthesize(self, source_type: type, destination_type: type) -> TypeMapping:
        return TypeMapping(
            source_type=source_type,
            destination_type=destination_type,
            field_mappings=tuple(self.field_mappings(source_type, destination_type)),
            synthesized=True,
            **self.settings.type_mapping_defaults(),
        )


class TypeMappingResolver:
    def __init__(self, registry: TypeMappingRegistry, provider: TypeMappingProvider) -> None:
        self.registry = registry
        self.provider = provider

    def resolve(
        self, source_type: type, destination_type: type, map_id: Optional[str] = None
    ) -> TypeMapping:
        mapping = self.registry.get(source_type, destination_type, map_id)
        if mapping is None and map_id:
            mapping = self._find_by_map_id(source_type, destination_type, map_id)
        if mapping is not None:
            return mapping
        if map_id:
            raise ConfigurationError(f"Type mapping not found for map id: {map_id}")

        logger.debug(
            "default_type_mapping_created",
            source_type=source_type.__name__,
            destination_type=destination_type.__name__,
        )
        return self.registry.put_if_absent(
            self.provider.synthesize(source_type, destination_type)
        )

    def resolve_ancestor_chain(
        self, source_type: type, destination_type: type
    ) -> Tuple[TypeMapping, ...]:
        """Explicit mappings of the two types' ancestors, most-base first."""
        key = (destination_type, source_type)
        cached = self.registry.cached_chain(key)
        if cached is not None:
            return cached

        chain: List[TypeMapping] = []
        destination_ancestors = _ancestors(destination_type)
        for destination_ancestor in destination_ancestors:
            self._collect(chain, source_type, destination_ancestor)
        for source_ancestor in _ancestors(source_type):
            self._collect(chain, source_ancestor, destination_type)
            for destination_ancestor in destination_ancestors:
                self._collect(chain, source_ancestor, destination_ancestor)

        for mapping in self._interface_mappings(source_type, destination_type):
            if mapping not in chain:
                chain.append(mapping)

        chain.reverse()
        result = tuple(chain)
        self.registry.cache_chain(key, result)
        return result

    # region Private methods
    # These methods are not intended to be used outside of this class.

    def _collect(self, chain: List[TypeMapping], source_type: type, destination_type: type) -> None:
        mapping = self.registry.get(source_type, destination_type)
        if mapping is not None and not mapping.synthesized and mapping not in chain:
            chain.append(mapping)

    def _interface_mappings(
        self, source_type: type, destination_type: type
    ) -> List[TypeMapping]:
        """Mappings between ABCs the types implement without inheriting them."""
        found = []
        source_mro = set(source_type.__mro__)
        destination_mro = set(destination_type.__mro__)
        for mapping in self.registry.explicit_mappings():
            if mapping.map_id is not None:
                continue
            if mapping.source_type in source_mro and mapping.destination_type in destination_mro:
                continue
            if _implements(source_type, mapping.source_type) and _implements(
                destination_type, mapping.destination_type
            ):
                found.append(mapping)
        return found

    def _find_by_map_id(
        self, source_type: type, destination_type: type, map_id: str
    ) -> Optional[TypeMapping]:
        for mapping in self.registry.explicit_mappings():
            if (
                mapping.map_id == map_id
                and issubclass(source_type, mapping.source_type)
                and issubclass(destination_type, mapping.destination_type)
            ):
                return mapping
        return None

    # endregion


def _ancestors(cls: type) -> List[type]:
    return [klass for klass in cls.__mro__[1:] if klass not in _ROOT_TYPES]


def _implements(cls: type, interface: type) -> bool:
    try:
        return issubclass(cls, interface)
    except TypeError:
        # Protocols that are not runtime checkable cannot be tested.
        return False
