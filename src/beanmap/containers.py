from __future__ import annotations

import array
import collections.abc
from enum import Enum
from inspect import isclass
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterator, List, Optional, Tuple

import structlog

from beanmap.config import FieldMapping, TypeMapping
from beanmap.converters import is_primitive
from beanmap.session import MappingSession

if TYPE_CHECKING:
    from beanmap.fields import FieldProcessor

logger = structlog.get_logger(__name__)

Routine = Callable[..., Any]

_FLOAT_TYPECODES = {"f", "d"}


class ContainerKind(str, Enum):
    ARRAY = "array"
    LIST = "list"
    SET = "set"
    MAP = "map"


def container_kind(cls: Optional[type]) -> Optional[ContainerKind]:
    if not isclass(cls) or issubclass(cls, (str, bytes, bytearray)):
        return None
    if issubclass(cls, (tuple, array.array)):
        return ContainerKind.ARRAY
    if issubclass(cls, collections.abc.Mapping):
        return ContainerKind.MAP
    if issubclass(cls, collections.abc.Set):
        return ContainerKind.SET
    if issubclass(cls, (list, collections.abc.Sequence, collections.abc.Collection)):
        return ContainerKind.LIST
    if cls is collections.abc.Iterable or issubclass(cls, collections.abc.Iterator):
        return ContainerKind.LIST
    return None


def is_supported_collection(cls: Optional[type]) -> bool:
    return container_kind(cls) in (ContainerKind.ARRAY, ContainerKind.LIST, ContainerKind.SET)


def is_supported_map(cls: Optional[type]) -> bool:
    return container_kind(cls) is ContainerKind.MAP


def is_container(value: Any) -> bool:
    return container_kind(type(value)) is not None


def is_primitive_array(value: Any) -> bool:
    return isinstance(value, array.array)


class CollectionAdapter:
    """Array, list, set and map cross-conversion for one field.

    Element destination types resolve from the field's explicit hints, then
    the element type inferred once from the destination annotation, then
    the source element's own type.
    """

    def __init__(self, processor: "FieldProcessor") -> None:
        self.processor = processor
        self.accessor = processor.accessor
        self._routines: Dict[Tuple[ContainerKind, ContainerKind], Routine] = {
            (ContainerKind.ARRAY, ContainerKind.ARRAY): self._array_to_array,
            (ContainerKind.ARRAY, ContainerKind.LIST): self._array_to_list,
            (ContainerKind.LIST, ContainerKind.ARRAY): self._list_to_array,
            (ContainerKind.LIST, ContainerKind.LIST): self._list_to_list,
            (ContainerKind.SET, ContainerKind.ARRAY): self._list_to_array,
            (ContainerKind.ARRAY, ContainerKind.SET): self._add_to_set,
            (ContainerKind.SET, ContainerKind.LIST): self._list_to_list,
            (ContainerKind.LIST, ContainerKind.SET): self._add_to_set,
            (ContainerKind.SET, ContainerKind.SET): self._add_to_set,
        }

    def map_collection(
        self,
        session: MappingSession,
        type_mapping: TypeMapping,
        source_obj: Any,
        source_value: Any,
        field_mapping: FieldMapping,
        destination_obj: Any,
        destination_type: type,
    ) -> Any:
        self._infer_element_hint(field_mapping, destination_obj)

        if isinstance(source_value, Iterator):
            source_value = list(source_value)

        routine = self._routines.get(
            (container_kind(type(source_value)), container_kind(destination_type))
        )
        if routine is None:
            return None
        return routine(
            session, type_mapping, source_obj, source_value, field_mapping, destination_obj,
            destination_type,
        )

    def map_map(
        self,
        session: MappingSession,
        type_mapping: TypeMapping,
        source_obj: Any,
        source_value: Any,
        field_mapping: FieldMapping,
        destination_obj: Any,
    ) -> Any:
        """Map entry values recursively; keys are copied as they are.

        A ``None`` entry value is stored and ends the conversion there: the
        remaining source entries are not copied.
        """
        existing = self.accessor.read(destination_obj, field_mapping.destination)
        if isinstance(existing, collections.abc.MutableMapping):
            result = existing
        else:
            result = self._new_map(source_value)

        for key, value in source_value.items():
            if value is None:
                result[key] = None
                logger.debug("map_conversion_stopped", field=field_mapping.destination, key=key)
                return result

            destination_value = self.processor.map_or_recurse(
                session, type_mapping, source_obj, value, type(value), field_mapping,
                destination_obj,
            )
            current = result.get(key)
            if (
                current is not None
                and current == destination_value
                and field_mapping.is_cumulative
            ):
                self.processor.mapper.merge_into(session, None, value, current, False, None)
            else:
                result[key] = destination_value
        return result

    # region Private methods
    # These methods are not intended to be used outside of this class.

    def _infer_element_hint(self, field_mapping: FieldMapping, destination_obj: Any) -> None:
        if field_mapping.destination_hints or field_mapping.hint_inferred:
            return
        hint = self.accessor.element_type(type(destination_obj), field_mapping.destination)
        if hint is not None:
            logger.debug(
                "element_hint_inferred",
                field=field_mapping.destination,
                hint=hint.__name__,
            )
        field_mapping.remember_hint(hint)

    def _array_to_array(
        self,
        session: MappingSession,
        type_mapping: TypeMapping,
        source_obj: Any,
        source_value: Any,
        field_mapping: FieldMapping,
        destination_obj: Any,
        destination_type: type,
    ) -> Any:
        if is_primitive_array(source_value):
            return self._add_to_primitive_array(
                session, type_mapping, source_obj, source_value, field_mapping,
                destination_obj, destination_type,
            )
        items = self._add_or_update_to_list(
            session, type_mapping, source_obj, list(source_value), field_mapping,
            destination_obj, field_mapping.element_hint,
        )
        return self._to_array(items, destination_type, self._existing(field_mapping, destination_obj))

    def _array_to_list(
        self,
        session: MappingSession,
        type_mapping: TypeMapping,
        source_obj: Any,
        source_value: Any,
        field_mapping: FieldMapping,
        destination_obj: Any,
        destination_type: type,
    ) -> List[Any]:
        entry_type = field_mapping.element_hint
        if entry_type is None and is_primitive_array(source_value):
            entry_type = float if source_value.typecode in _FLOAT_TYPECODES else int
            if source_value.typecode == "u":
                entry_type = str
        return self._add_or_update_to_list(
            session, type_mapping, source_obj, list(source_value), field_mapping,
            destination_obj, entry_type,
        )

    def _list_to_array(
        self,
        session: MappingSession,
        type_mapping: TypeMapping,
        source_obj: Any,
        source_value: Any,
        field_mapping: FieldMapping,
        destination_obj: Any,
        destination_type: type,
    ) -> Any:
        items = self._add_or_update_to_list(
            session, type_mapping, source_obj, list(source_value), field_mapping,
            destination_obj, field_mapping.element_hint,
        )
        return self._to_array(items, destination_type, self._existing(field_mapping, destination_obj))

    def _list_to_list(
        self,
        session: MappingSession,
        type_mapping: TypeMapping,
        source_obj: Any,
        source_value: Any,
        field_mapping: FieldMapping,
        destination_obj: Any,
        destination_type: type,
    ) -> List[Any]:
        return self._add_or_update_to_list(
            session, type_mapping, source_obj, list(source_value), field_mapping,
            destination_obj, None,
        )

    def _add_to_primitive_array(
        self,
        session: MappingSession,
        type_mapping: TypeMapping,
        source_obj: Any,
        source_value: Any,
        field_mapping: FieldMapping,
        destination_obj: Any,
        destination_type: type,
    ) -> Any:
        # Primitive arrays are always cumulative.
        existing = self._existing(field_mapping, destination_obj)
        items = list(existing) if existing is not None else []
        for value in source_value:
            entry_type = field_mapping.element_hint or type(value)
            items.append(
                self.processor.map_or_recurse(
                    session, type_mapping, source_obj, value, entry_type, field_mapping,
                    destination_obj,
                )
            )
        if issubclass(destination_type, array.array) or isinstance(existing, array.array):
            source = existing if isinstance(existing, array.array) else source_value
            return array.array(source.typecode, items)
        return tuple(items)

    def _add_to_set(
        self,
        session: MappingSession,
        type_mapping: TypeMapping,
        source_obj: Any,
        source_value: Any,
        field_mapping: FieldMapping,
        destination_obj: Any,
        destination_type: type,
    ) -> Any:
        existing = self._existing(field_mapping, destination_obj)
        result: List[Any] = []
        if existing is not None:
            result.extend(existing)
        mapped: List[Any] = []

        for value in source_value:
            entry_type = self._entry_type(field_mapping, value, None)
            destination_value = self.processor.map_or_recurse(
                session, type_mapping, source_obj, value, entry_type, field_mapping,
                destination_obj,
            )
            self._merge_element(session, field_mapping, result, mapped, value, destination_value)

        if field_mapping.remove_orphans:
            result = list(mapped)

        result = list(dict.fromkeys(result))
        if isinstance(existing, collections.abc.MutableSet):
            existing.clear()
            existing.update(result)
            return existing
        if issubclass(destination_type, frozenset) or isinstance(existing, frozenset):
            return frozenset(result)
        return set(result)

    def _add_or_update_to_list(
        self,
        session: MappingSession,
        type_mapping: TypeMapping,
        source_obj: Any,
        source_items: List[Any],
        field_mapping: FieldMapping,
        destination_obj: Any,
        destination_entry_type: Optional[type],
    ) -> List[Any]:
        existing = self._existing(field_mapping, destination_obj)
        result = self._prepare_destination_list(source_items, existing)
        mapped: List[Any] = []

        previous_type: Optional[type] = None
        for value in source_items:
            if value is None:
                entry_type = destination_entry_type or previous_type
            else:
                entry_type = self._entry_type(field_mapping, value, destination_entry_type)
            destination_value = self.processor.map_or_recurse(
                session, type_mapping, source_obj, value, entry_type, field_mapping,
                destination_obj,
            )
            previous_type = entry_type
            self._merge_element(session, field_mapping, result, mapped, value, destination_value)

        if field_mapping.remove_orphans:
            self._remove_orphans(mapped, result)
        return result

    def _merge_element(
        self,
        session: MappingSession,
        field_mapping: FieldMapping,
        result: List[Any],
        mapped: List[Any],
        source_value: Any,
        destination_value: Any,
    ) -> None:
        if field_mapping.is_cumulative:
            result.append(destination_value)
            mapped.append(destination_value)
            return
        index = self._index_of(result, destination_value)
        if index is None:
            result.append(destination_value)
            mapped.append(destination_value)
            return
        current = result[index]
        # Immutable primitives cannot be updated in place.
        if not is_primitive(type(current)):
            self.processor.mapper.merge_into(session, None, source_value, current, False, None)
        mapped.append(current)

    @staticmethod
    def _entry_type(
        field_mapping: FieldMapping, value: Any, destination_entry_type: Optional[type]
    ) -> Optional[type]:
        if value is None:
            return destination_entry_type
        if destination_entry_type is None or field_mapping.has_multiple_hints:
            return field_mapping.destination_hint_for(type(value))
        return destination_entry_type

    @staticmethod
    def _index_of(items: List[Any], value: Any) -> Optional[int]:
        for index, item in enumerate(items):
            if item is value or item == value:
                return index
        return None

    @classmethod
    def _remove_orphans(cls, mapped: List[Any], result: List[Any]) -> None:
        result[:] = [item for item in result if cls._index_of(mapped, item) is not None]
        for item in mapped:
            if cls._index_of(result, item) is None:
                result.append(item)

    @staticmethod
    def _prepare_destination_list(source_items: List[Any], existing: Any) -> List[Any]:
        if isinstance(existing, list):
            return existing
        if isinstance(existing, (tuple, array.array)):
            return list(existing)
        return []

    @staticmethod
    def _to_array(items: List[Any], destination_type: type, existing: Any) -> Any:
        if issubclass(destination_type, array.array) or isinstance(existing, array.array):
            if isinstance(existing, array.array):
                return array.array(existing.typecode, items)
            typecode = _numeric_typecode(items)
            if typecode is not None:
                return array.array(typecode, items)
            logger.debug("array_typecode_unknown", items=len(items))
        return tuple(items)

    @staticmethod
    def _new_map(source_value: Any) -> Dict[Any, Any]:
        if isinstance(source_value, dict) and type(source_value).__init__ is dict.__init__:
            return type(source_value)()
        return {}

    def _existing(self, field_mapping: FieldMapping, destination_obj: Any) -> Any:
        return self.accessor.read(destination_obj, field_mapping.destination)

    # endregion


def _numeric_typecode(items: List[Any]) -> Optional[str]:
    """Typecode for a new array, or None when the items are not all numbers."""
    if not all(isinstance(item, (int, float)) for item in items):
        return None
    return "d" if any(isinstance(item, float) for item in items) else "q"
