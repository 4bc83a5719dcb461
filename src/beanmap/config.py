from __future__ import annotations

from enum import Enum
from typing import Any, Dict, NamedTuple, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, ImportString, PrivateAttr, model_validator

from beanmap.errors import ConfigurationError


class Relationship(str, Enum):
    CUMULATIVE = "cumulative"
    NON_CUMULATIVE = "non-cumulative"


class FieldKind(str, Enum):
    PLAIN = "plain"
    EXCLUDED = "excluded"
    ITERATE = "iterate"
    MAP = "map"


# Field policies that fall back to the owning TypeMapping when left unset.
INHERITED_POLICIES = (
    "stop_on_errors",
    "map_null",
    "map_empty_string",
    "trim_strings",
    "relationship",
    "date_format",
)


class MappingKey(NamedTuple):
    source_type: type
    destination_type: type
    map_id: Optional[str] = None


class ConverterBinding(BaseModel):
    """Class-level custom converter bound to a pair of types.

    A binding applies in both directions: ``(A, B)`` also matches ``B -> A``.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    source_type: type
    destination_type: type
    converter: ImportString

    def matches(self, source_type: type, destination_type: type) -> bool:
        return (
            issubclass(source_type, self.source_type)
            and issubclass(destination_type, self.destination_type)
        ) or (
            issubclass(source_type, self.destination_type)
            and issubclass(destination_type, self.source_type)
        )


class FieldMapping(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    source: str
    destination: str
    kind: FieldKind = FieldKind.PLAIN
    source_hints: Tuple[ImportString, ...] = ()
    destination_hints: Tuple[ImportString, ...] = ()
    custom_converter: Optional[ImportString] = None
    custom_converter_id: Optional[str] = None
    custom_converter_param: Optional[str] = None
    relationship: Optional[Relationship] = None
    remove_orphans: bool = False
    copy_by_reference: bool = False
    trim_strings: Optional[bool] = None
    map_null: Optional[bool] = None
    map_empty_string: Optional[bool] = None
    stop_on_errors: Optional[bool] = None
    date_format: Optional[str] = None
    map_id: Optional[str] = None
    source_get_method: Optional[str] = None
    destination_set_method: Optional[str] = None
    create_method: Optional[str] = None
    one_way: bool = False

    _inferred_hint: Optional[type] = PrivateAttr(default=None)
    _hint_inferred: bool = PrivateAttr(default=False)

    @property
    def is_cumulative(self) -> bool:
        return self.relationship is not Relationship.NON_CUMULATIVE

    @property
    def has_multiple_hints(self) -> bool:
        return len(self.destination_hints) > 1

    @property
    def element_hint(self) -> Optional[type]:
        """Explicit single destination hint, else the memoized inferred one."""
        if self.destination_hints:
            return self.destination_hints[0]
        return self._inferred_hint

    @property
    def hint_inferred(self) -> bool:
        return self._hint_inferred

    def remember_hint(self, hint: Optional[type]) -> None:
        self._inferred_hint = hint
        self._hint_inferred = True

    def detached(self, **update: Any) -> "FieldMapping":
        """Copy with ``update`` applied and no remembered element hint.

        The inferred hint depends on the owning destination type, so it is
        never carried into another TypeMapping.
        """
        copy = self.model_copy(update=update)
        copy._inferred_hint = None
        copy._hint_inferred = False
        return copy

    def destination_hint_for(self, source_class: type) -> type:
        """Pick the destination element type for a source element type.

        With several destination hints the source hints decide by position.
        Without any hint the source element's own type is used.
        """
        if not self.destination_hints:
            return self._inferred_hint or source_class
        if not self.has_multiple_hints:
            return self.destination_hints[0]
        for index, hint in enumerate(self.source_hints):
            if issubclass(source_class, hint) and index < len(self.destination_hints):
                return self.destination_hints[index]
        raise ConfigurationError(
            f"No destination hint for {source_class.__name__} in field "
            f"{self.source} -> {self.destination}."
        )

    def reverse(self) -> "FieldMapping":
        return self.detached(
            source=self.destination,
            destination=self.source,
            source_hints=self.destination_hints,
            destination_hints=self.source_hints,
            source_get_method=None,
            destination_set_method=None,
        )


class TypeMapping(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    source_type: type
    destination_type: type
    map_id: Optional[str] = None
    field_mappings: Tuple[FieldMapping, ...] = ()
    converters: Tuple[ConverterBinding, ...] = ()
    allowed_exceptions: Tuple[Type[BaseException], ...] = ()
    factory: Optional[Any] = None
    factory_id: Optional[str] = None
    create_method: Optional[str] = None
    stop_on_errors: bool = True
    map_null: bool = True
    map_empty_string: bool = True
    trim_strings: bool = False
    relationship: Relationship = Relationship.CUMULATIVE
    date_format: Optional[str] = None
    wildcard: bool = True
    synthesized: bool = False

    @model_validator(mode="before")
    @classmethod
    def _inherit_field_policies(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        defaults = {
            name: data.get(name, cls.model_fields[name].default)
            for name in INHERITED_POLICIES
        }
        data = dict(data)
        data["field_mappings"] = tuple(
            _inherit(field, defaults) for field in data.get("field_mappings", ())
        )
        return data

    @property
    def key(self) -> MappingKey:
        return MappingKey(self.source_type, self.destination_type, self.map_id)

    def reverse(self) -> "TypeMapping":
        return self.model_copy(
            update={
                "source_type": self.destination_type,
                "destination_type": self.source_type,
                "field_mappings": tuple(
                    field.reverse() for field in self.field_mappings if not field.one_way
                ),
                "factory": None,
                "factory_id": None,
                "create_method": None,
            }
        )


def _inherit(field: Any, defaults: Dict[str, Any]) -> Any:
    if isinstance(field, FieldMapping):
        update = {
            name: value
            for name, value in defaults.items()
            if getattr(field, name) is None
        }
        return field.detached(**update)
    if isinstance(field, dict):
        return {**defaults, **{k: v for k, v in field.items() if v is not None}}
    return field


class MapperSettings(BaseModel):
    """Global defaults applied to every TypeMapping the mapper builds."""

    model_config = ConfigDict(frozen=True)

    stop_on_errors: bool = True
    map_null: bool = True
    map_empty_string: bool = True
    trim_strings: bool = False
    relationship: Relationship = Relationship.CUMULATIVE
    date_format: Optional[str] = None
    wildcard: bool = True
    statistics_enabled: bool = False
    log_level: str = "INFO"
    log_format: str = "console"

    def type_mapping_defaults(self) -> Dict[str, Any]:
        return {
            "stop_on_errors": self.stop_on_errors,
            "map_null": self.map_null,
            "map_empty_string": self.map_empty_string,
            "trim_strings": self.trim_strings,
            "relationship": self.relationship,
            "date_format": self.date_format,
            "wildcard": self.wildcard,
        }
