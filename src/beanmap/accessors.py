from __future__ import annotations

import collections.abc
import dataclasses
import types
import typing
from inspect import Parameter, isabstract, isclass, signature
from typing import (
    Any,
    ClassVar,
    Dict,
    List,
    Optional,
    Protocol,
    Set,
    Tuple,
    Type,
    TypeVar,
    Union,
    get_args,
    get_origin,
    get_type_hints,
    runtime_checkable,
)

from pydantic import BaseModel

from beanmap.errors import MappingError

TT = TypeVar("TT")

_UNION_ORIGINS = (Union, types.UnionType)

_SEQUENCE_ORIGINS = (
    list,
    set,
    frozenset,
    collections.abc.Sequence,
    collections.abc.MutableSequence,
    collections.abc.Collection,
    collections.abc.Iterable,
    collections.abc.Set,
    collections.abc.MutableSet,
)


@runtime_checkable
class Accessor(Protocol):
    """Reads and writes named or dotted-path fields on objects."""

    def read(self, obj: Any, path: str, get_method: Optional[str] = None) -> Any: ...

    def write(
        self, obj: Any, path: str, value: Any, set_method: Optional[str] = None
    ) -> None: ...

    def declared_type(self, owner: Union[type, Any], path: str) -> type: ...

    def element_type(self, owner: Union[type, Any], path: str) -> Optional[type]: ...

    def field_names(self, cls: type) -> List[str]: ...

    def create_instance(self, cls: Type[TT]) -> TT: ...


def unwrap_hint(hint: Any) -> type:
    """Reduce an annotation to the runtime class the mapper reasons about."""
    if hint is Any:
        return object
    origin = get_origin(hint)
    if origin in _UNION_ORIGINS:
        args = [arg for arg in get_args(hint) if arg is not type(None)]
        return unwrap_hint(args[0]) if len(args) == 1 else object
    if origin is typing.Annotated:
        return unwrap_hint(get_args(hint)[0])
    if origin is not None:
        return origin if isclass(origin) else object
    if isclass(hint):
        return hint
    return object


def element_hint(hint: Any) -> Optional[type]:
    origin = get_origin(hint)
    if origin in _UNION_ORIGINS:
        args = [arg for arg in get_args(hint) if arg is not type(None)]
        return element_hint(args[0]) if len(args) == 1 else None
    if origin is typing.Annotated:
        return element_hint(get_args(hint)[0])
    args = get_args(hint)
    if not args:
        return None
    if origin is tuple:
        if (len(args) == 2 and args[1] is Ellipsis) or len(set(args)) == 1:
            candidate = unwrap_hint(args[0])
        else:
            return None
    elif origin in _SEQUENCE_ORIGINS:
        candidate = unwrap_hint(args[0])
    else:
        return None
    return None if candidate is object else candidate


class PopoAdapter:
    """Field access for plain objects and dataclasses."""

    def get_init_params(self, cls: type) -> Set[Tuple[str, Parameter]]:
        try:
            parameters = signature(cls.__init__).parameters
        except (TypeError, ValueError):
            return set()
        return {
            (name, param)
            for name, param in parameters.items()
            if name not in ["self", "args", "kwargs"]
            and param.kind not in (Parameter.VAR_POSITIONAL, Parameter.VAR_KEYWORD)
        }

    def get_type_hints(self, cls: type) -> Dict[str, Any]:
        try:
            hints = get_type_hints(cls)
        except (NameError, TypeError, AttributeError):
            hints = {}
            for klass in reversed(cls.__mro__):
                hints.update(getattr(klass, "__annotations__", {}))
        return {
            name: hint
            for name, hint in hints.items()
            if not name.startswith("_") and get_origin(hint) is not ClassVar
        }

    def field_names(self, cls: type) -> List[str]:
        names: List[str] = []
        if dataclasses.is_dataclass(cls):
            names.extend(f.name for f in dataclasses.fields(cls))
        names.extend(self.get_type_hints(cls))
        init_names = {name for name, _ in self.get_init_params(cls)}
        if init_names:
            names.extend(
                name for name in signature(cls.__init__).parameters if name in init_names
            )
        return [name for name in dict.fromkeys(names) if not name.startswith("_")]

    def annotation(self, cls: type, name: str) -> Any:
        hints = self.get_type_hints(cls)
        if name in hints:
            return hints[name]
        for param_name, param in self.get_init_params(cls):
            if param_name == name and param.annotation is not Parameter.empty:
                return param.annotation
        return Any

    def get(self, obj: Any, name: str) -> Any:
        return getattr(obj, name, None)

    def set(self, obj: Any, name: str, value: Any) -> None:
        setattr(obj, name, value)

    def create_instance(self, cls: Type[TT]) -> TT:
        params = self.get_init_params(cls)
        if all(param.default is not Parameter.empty for _, param in params):
            return cls()
        instance = object.__new__(cls)
        if dataclasses.is_dataclass(cls):
            for f in dataclasses.fields(cls):
                if f.default is not dataclasses.MISSING:
                    setattr(instance, f.name, f.default)
                elif f.default_factory is not dataclasses.MISSING:
                    setattr(instance, f.name, f.default_factory())
        return instance


class PydanticModelAdapter(PopoAdapter):
    def __init__(self, BaseModel: Type) -> None:
        self.BaseModel = BaseModel

    def field_names(self, cls: type) -> List[str]:
        return [field.alias or name for name, field in cls.model_fields.items()]

    def annotation(self, cls: type, name: str) -> Any:
        for field_name, field in cls.model_fields.items():
            if name in (field_name, field.alias):
                return field.annotation
        return Any

    def get(self, obj: Any, name: str) -> Any:
        return getattr(obj, self._attribute_name(type(obj), name), None)

    def set(self, obj: Any, name: str, value: Any) -> None:
        setattr(obj, self._attribute_name(type(obj), name), value)

    def create_instance(self, cls: Type[TT]) -> TT:
        if not (isclass(cls) and issubclass(cls, self.BaseModel)):
            raise TypeError("Expected a Pydantic BaseModel class")
        return cls.model_construct()

    @staticmethod
    def _attribute_name(cls: type, name: str) -> str:
        for field_name, field in cls.model_fields.items():
            if field.alias == name:
                return field_name
        return name


class MappingAdapter(PopoAdapter):
    """Map-backed pseudo-fields: keys of a mapping act as attributes."""

    def field_names(self, cls: type) -> List[str]:
        return []

    def annotation(self, cls: type, name: str) -> Any:
        return Any

    def get(self, obj: Any, name: str) -> Any:
        return obj.get(name)

    def set(self, obj: Any, name: str, value: Any) -> None:
        if not isinstance(obj, collections.abc.MutableMapping):
            raise TypeError(f"Cannot write key {name!r} on read-only {type(obj).__name__}")
        obj[name] = value

    def create_instance(self, cls: Type[TT]) -> TT:
        if isabstract(cls):
            return dict()
        return cls()


class ObjectAccessor:
    """Default Accessor picking an adapter per object kind."""

    def __init__(self) -> None:
        self._popo = PopoAdapter()
        self._pydantic = PydanticModelAdapter(BaseModel)
        self._mapping = MappingAdapter()

    def get_adapter(self, obj: Any) -> PopoAdapter:
        cls = obj if isclass(obj) else type(obj)
        if issubclass(cls, BaseModel):
            return self._pydantic
        if issubclass(cls, collections.abc.Mapping):
            return self._mapping
        return self._popo

    def read(self, obj: Any, path: str, get_method: Optional[str] = None) -> Any:
        if get_method:
            return getattr(obj, get_method)()
        for name in path.split("."):
            if obj is None:
                return None
            obj = self.get_adapter(obj).get(obj, name)
        return obj

    def write(
        self, obj: Any, path: str, value: Any, set_method: Optional[str] = None
    ) -> None:
        *parents, name = path.split(".")
        for parent in parents:
            child = self.get_adapter(obj).get(obj, parent)
            if child is None:
                child = self.create_instance(self.declared_type(obj, parent))
                self.get_adapter(obj).set(obj, parent, child)
            obj = child
        if set_method:
            getattr(obj, set_method)(value)
            return
        self.get_adapter(obj).set(obj, name, value)

    def declared_type(self, owner: Union[type, Any], path: str) -> type:
        return unwrap_hint(self._annotation(owner, path))

    def element_type(self, owner: Union[type, Any], path: str) -> Optional[type]:
        return element_hint(self._annotation(owner, path))

    def field_names(self, cls: type) -> List[str]:
        return self.get_adapter(cls).field_names(cls)

    def create_instance(self, cls: Type[TT]) -> TT:
        if cls is object or (
            isabstract(cls) and not issubclass(cls, collections.abc.Mapping)
        ):
            raise MappingError(f"Cannot instantiate {cls.__name__}")
        return self.get_adapter(cls).create_instance(cls)

    def _annotation(self, owner: Union[type, Any], path: str) -> Any:
        *parents, name = path.split(".")
        for parent in parents:
            value = None if isclass(owner) else self.get_adapter(owner).get(owner, parent)
            if value is None:
                cls = owner if isclass(owner) else type(owner)
                owner = unwrap_hint(self.get_adapter(cls).annotation(cls, parent))
            else:
                owner = value
        cls = owner if isclass(owner) else type(owner)
        return self.get_adapter(cls).annotation(cls, name)
