from decimal import Decimal

import pytest
from pydantic import ValidationError as PydanticValidationError

from beanmap import (
    ConfigurationError,
    FieldKind,
    FieldMapping,
    MapperSettings,
    Relationship,
    TypeMapping,
)


class Animal:
    pass


class Dog(Animal):
    pass


class Cat(Animal):
    pass


class DogDto:
    pass


class CatDto:
    pass


class TestFieldMapping:
    """Tests for field mapping configuration."""

    def test_policies_default_to_unset(self):
        field_mapping = FieldMapping(source="a", destination="b")

        assert field_mapping.map_null is None
        assert field_mapping.is_cumulative
        assert field_mapping.kind is FieldKind.PLAIN

    def test_hints_accept_import_strings(self):
        field_mapping = FieldMapping(
            source="a", destination="a", destination_hints=("decimal.Decimal",)
        )

        assert field_mapping.destination_hints == (Decimal,)
        assert field_mapping.element_hint is Decimal

    def test_destination_hint_for_multiple_hints(self):
        field_mapping = FieldMapping(
            source="pets",
            destination="pets",
            source_hints=(Dog, Cat),
            destination_hints=(DogDto, CatDto),
        )

        assert field_mapping.has_multiple_hints
        assert field_mapping.destination_hint_for(Cat) is CatDto
        assert field_mapping.destination_hint_for(Dog) is DogDto

    def test_destination_hint_without_match_fails(self):
        field_mapping = FieldMapping(
            source="pets",
            destination="pets",
            source_hints=(Dog, Cat),
            destination_hints=(DogDto, CatDto),
        )

        with pytest.raises(ConfigurationError):
            field_mapping.destination_hint_for(Animal)

    def test_destination_hint_falls_back_to_source_class(self):
        field_mapping = FieldMapping(source="pets", destination="pets")

        assert field_mapping.destination_hint_for(Dog) is Dog

        field_mapping.remember_hint(DogDto)

        assert field_mapping.hint_inferred
        assert field_mapping.destination_hint_for(Dog) is DogDto

    def test_is_frozen(self):
        field_mapping = FieldMapping(source="a", destination="b")

        with pytest.raises(PydanticValidationError):
            field_mapping.source = "c"

    def test_reverse_swaps_paths_and_hints(self):
        field_mapping = FieldMapping(
            source="a",
            destination="b",
            source_hints=(Dog,),
            destination_hints=(DogDto,),
            destination_set_method="set_b",
        )

        reversed_mapping = field_mapping.reverse()

        assert reversed_mapping.source == "b"
        assert reversed_mapping.destination == "a"
        assert reversed_mapping.destination_hints == (Dog,)
        assert reversed_mapping.destination_set_method is None


class TestTypeMapping:
    """Tests for type mapping configuration."""

    def test_fields_inherit_type_policies(self):
        type_mapping = TypeMapping(
            source_type=Dog,
            destination_type=DogDto,
            map_null=False,
            relationship=Relationship.NON_CUMULATIVE,
            field_mappings=(
                FieldMapping(source="a", destination="a"),
                FieldMapping(source="b", destination="b", map_null=True),
                {"source": "c", "destination": "c"},
            ),
        )

        a, b, c = type_mapping.field_mappings
        assert a.map_null is False
        assert b.map_null is True
        assert c.map_null is False
        assert not a.is_cumulative
        assert a.stop_on_errors is True

    def test_fields_are_copied_per_type_mapping(self):
        first = TypeMapping(
            source_type=Dog,
            destination_type=DogDto,
            field_mappings=(FieldMapping(source="a", destination="a"),),
        )
        shared = first.field_mappings[0]
        shared.remember_hint(DogDto)

        second = TypeMapping(source_type=Cat, destination_type=CatDto, field_mappings=(shared,))

        copied = second.field_mappings[0]
        assert copied is not shared
        assert not copied.hint_inferred
        assert copied.element_hint is None
        assert shared.element_hint is DogDto

    def test_reverse_drops_one_way_fields(self):
        type_mapping = TypeMapping(
            source_type=Dog,
            destination_type=DogDto,
            map_id="pets",
            field_mappings=(
                FieldMapping(source="a", destination="x"),
                FieldMapping(source="b", destination="y", one_way=True),
            ),
        )

        reversed_mapping = type_mapping.reverse()

        assert reversed_mapping.key == (DogDto, Dog, "pets")
        assert [(fm.source, fm.destination) for fm in reversed_mapping.field_mappings] == [
            ("x", "a")
        ]


class TestMapperSettings:
    """Tests for global settings."""

    def test_model_validate(self):
        settings = MapperSettings.model_validate(
            {"stop_on_errors": False, "relationship": "non-cumulative", "log_format": "json"}
        )

        assert settings.stop_on_errors is False
        assert settings.relationship is Relationship.NON_CUMULATIVE
        assert settings.type_mapping_defaults()["relationship"] is Relationship.NON_CUMULATIVE

    def test_defaults(self):
        settings = MapperSettings()

        assert settings.stop_on_errors is True
        assert settings.map_null is True
        assert settings.statistics_enabled is False
