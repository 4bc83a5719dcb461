import threading
from abc import ABC
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

import pytest

from beanmap import ConfigurationError, FieldKind, Mapper, MapperSettings, TypeMapping
from beanmap.accessors import ObjectAccessor
from beanmap.registry import DefaultMappingProvider, TypeMappingRegistry, TypeMappingResolver


@dataclass
class Base:
    id: int = 0


@dataclass
class Mid(Base):
    name: str = ""


@dataclass
class Leaf(Mid):
    size: int = 0


@dataclass
class BaseDto:
    id: int = 0


@dataclass
class MidDto(BaseDto):
    name: str = ""


@dataclass
class LeafDto(MidDto):
    size: int = 0


class Identified(ABC):
    code: str


class Plain:
    def __init__(self, code: str = ""):
        self.code = code


Identified.register(Plain)


@dataclass
class Target:
    identifier: str = ""


@pytest.fixture
def registry():
    return TypeMappingRegistry()


@pytest.fixture
def provider():
    return DefaultMappingProvider(ObjectAccessor(), MapperSettings())


@pytest.fixture
def resolver(registry, provider):
    return TypeMappingResolver(registry, provider)


def explicit(source_type, destination_type, map_id=None):
    return TypeMapping(source_type=source_type, destination_type=destination_type, map_id=map_id)


class TestRegistry:
    """Tests for the keyed TypeMapping store."""

    def test_put_if_absent_keeps_first(self, registry):
        first = explicit(Base, BaseDto)

        assert registry.put_if_absent(first) is first
        assert registry.put_if_absent(explicit(Base, BaseDto)) is first
        assert len(registry) == 1

    def test_map_id_is_part_of_the_key(self, registry):
        registry.put(explicit(Base, BaseDto, "a"))

        assert registry.get(Base, BaseDto) is None
        assert registry.get(Base, BaseDto, "a") is not None

    def test_put_clears_chain_cache(self, registry):
        registry.cache_chain((BaseDto, Base), ())

        registry.put(explicit(Base, BaseDto))

        assert registry.cached_chain((BaseDto, Base)) is None


class TestResolve:
    """Tests for TypeMapping resolution."""

    def test_synthesizes_and_stores_default(self, resolver, registry):
        mapping = resolver.resolve(Leaf, LeafDto)

        assert mapping.synthesized
        assert [fm.source for fm in mapping.field_mappings] == ["id", "name", "size"]
        assert resolver.resolve(Leaf, LeafDto) is mapping
        assert registry.explicit_mappings() == []

    def test_concurrent_resolve_stores_one_default(self, resolver, registry):
        workers = 8
        barrier = threading.Barrier(workers)

        def resolve(_):
            barrier.wait()
            return resolver.resolve(Leaf, LeafDto)

        with ThreadPoolExecutor(max_workers=workers) as pool:
            mappings = list(pool.map(resolve, range(workers)))

        assert len(registry) == 1
        assert all(mapping is registry.get(Leaf, LeafDto) for mapping in mappings)

    def test_shared_mapper_across_threads(self):
        mapper = Mapper()

        with ThreadPoolExecutor(max_workers=4) as pool:
            results = list(pool.map(lambda i: mapper.map(Leaf(i, str(i), i), LeafDto), range(20)))

        assert [result.id for result in results] == list(range(20))
        assert len(mapper.registry) == 1

    def test_explicit_mapping_wins(self, resolver, registry):
        mapping = explicit(Base, BaseDto)
        registry.put(mapping)

        assert resolver.resolve(Base, BaseDto) is mapping

    def test_unknown_map_id_fails(self, resolver):
        with pytest.raises(ConfigurationError, match="Type mapping not found for map id: x"):
            resolver.resolve(Base, BaseDto, "x")

    def test_map_id_matches_subclasses(self, resolver, registry):
        mapping = explicit(Base, BaseDto, "x")
        registry.put(mapping)

        assert resolver.resolve(Leaf, LeafDto, "x") is mapping

    def test_map_backed_defaults(self, provider):
        to_dict = provider.synthesize(Mid, dict)
        from_dict = provider.synthesize(dict, MidDto)

        assert {fm.kind for fm in to_dict.field_mappings} == {FieldKind.MAP}
        assert [fm.destination for fm in to_dict.field_mappings] == ["id", "name"]
        assert [fm.source for fm in from_dict.field_mappings] == ["id", "name"]

    def test_defaults_follow_settings(self, registry):
        settings = MapperSettings(map_null=False, trim_strings=True)
        resolver = TypeMappingResolver(registry, DefaultMappingProvider(ObjectAccessor(), settings))

        mapping = resolver.resolve(Base, BaseDto)

        assert mapping.map_null is False
        assert all(fm.trim_strings for fm in mapping.field_mappings)


class TestAncestorChain:
    """Tests for ancestor and interface mapping chains."""

    def test_most_base_mapping_first(self, resolver, registry):
        base = explicit(Base, BaseDto)
        mid = explicit(Mid, MidDto)
        registry.put(base)
        registry.put(mid)

        assert resolver.resolve_ancestor_chain(Leaf, LeafDto) == (base, mid)

    def test_chain_is_cached(self, resolver, registry):
        registry.put(explicit(Base, BaseDto))

        chain = resolver.resolve_ancestor_chain(Leaf, LeafDto)

        assert resolver.resolve_ancestor_chain(Leaf, LeafDto) is chain
        assert registry.cached_chain((LeafDto, Leaf)) is chain

    def test_synthesized_defaults_are_ignored(self, resolver):
        resolver.resolve(Base, BaseDto)

        assert resolver.resolve_ancestor_chain(Leaf, LeafDto) == ()

    def test_mappings_with_map_id_are_ignored(self, resolver, registry):
        registry.put(explicit(Base, BaseDto, "x"))

        assert resolver.resolve_ancestor_chain(Leaf, LeafDto) == ()

    def test_interface_mapping(self, resolver, registry):
        interface = explicit(Identified, Target)
        registry.put(interface)

        assert resolver.resolve_ancestor_chain(Plain, Target) == (interface,)

    def test_interface_mapping_applies_when_mapping(self):
        mapper = Mapper()
        mapper.add_mapping(source=Identified, target=Target, fields={"code": "identifier"})

        assert mapper.map(Plain("abc"), Target).identifier == "abc"
