import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Annotated, Any, Dict, List, Optional, Set, Tuple, Union

import pytest
from pydantic import BaseModel, Field

from beanmap import MappingError
from beanmap.accessors import ObjectAccessor, element_hint, unwrap_hint


@dataclass
class City:
    name: str = ""


@dataclass
class Street:
    name: str = ""
    city: Optional[City] = None


@dataclass
class Home:
    street: Optional[Street] = None
    rooms: List[int] = field(default_factory=list)
    notes: Any = None


class Legacy:
    def __init__(self, name: str, size):
        self.name = name
        self.size = size


class Account(BaseModel):
    full_name: str = Field("", alias="fullName")
    balance: int = 0


class Shape(ABC):
    @abstractmethod
    def area(self): ...


class Factory:
    def __init__(self, value="default"):
        self.value = value


@pytest.fixture
def accessor():
    return ObjectAccessor()


class TestHints:
    """Tests for annotation reduction."""

    @pytest.mark.parametrize(
        "hint,expected",
        [
            (int, int),
            (Optional[int], int),
            (Union[int, str], object),
            (List[int], list),
            (Dict[str, int], dict),
            (Annotated[int, "meta"], int),
            (Any, object),
            ("City", object),
        ],
    )
    def test_unwrap_hint(self, hint, expected):
        assert unwrap_hint(hint) is expected

    @pytest.mark.skipif(sys.version_info < (3, 10), reason="PEP 604 unions")
    def test_unwrap_pep_604_union(self):
        assert unwrap_hint(eval("int | None")) is int

    @pytest.mark.parametrize(
        "hint,expected",
        [
            (List[City], City),
            (Set[str], str),
            (Tuple[int, ...], int),
            (Tuple[int, int], int),
            (Tuple[int, str], None),
            (Optional[List[City]], City),
            (Dict[str, int], None),
            (list, None),
            (List[Any], None),
        ],
    )
    def test_element_hint(self, hint, expected):
        assert element_hint(hint) is expected


class TestObjectAccessor:
    """Tests for reading, writing and type discovery."""

    def test_dotted_read(self, accessor):
        home = Home(street=Street("Main", City("Oslo")))

        assert accessor.read(home, "street.city.name") == "Oslo"

    def test_dotted_read_stops_at_none(self, accessor):
        assert accessor.read(Home(), "street.city.name") is None

    def test_dotted_write_creates_intermediates(self, accessor):
        home = Home()

        accessor.write(home, "street.city.name", "Oslo")

        assert home.street == Street(city=City("Oslo"))

    def test_get_and_set_methods(self, accessor):
        class Box:
            def __init__(self):
                self._value = None

            def get_value(self):
                return self._value

            def put_value(self, value):
                self._value = value

        box = Box()
        accessor.write(box, "value", 3, set_method="put_value")

        assert accessor.read(box, "value", get_method="get_value") == 3

    def test_mapping_pseudo_fields(self, accessor):
        data = {"name": "Ann"}

        accessor.write(data, "age", 3)

        assert accessor.read(data, "name") == "Ann"
        assert data == {"name": "Ann", "age": 3}

    def test_read_only_mapping_rejects_writes(self, accessor):
        from types import MappingProxyType

        with pytest.raises(TypeError):
            accessor.write(MappingProxyType({}), "name", "Ann")

    def test_declared_types(self, accessor):
        assert accessor.declared_type(Home, "street") is Street
        assert accessor.declared_type(Home, "street.city") is City
        assert accessor.declared_type(Home, "rooms") is list
        assert accessor.declared_type(Home, "notes") is object
        assert accessor.declared_type(Home, "missing") is object
        assert accessor.declared_type(Legacy, "name") is str
        assert accessor.declared_type(Legacy, "size") is object

    def test_element_type(self, accessor):
        assert accessor.element_type(Home, "rooms") is int
        assert accessor.element_type(Home, "street") is None

    def test_field_names(self, accessor):
        assert accessor.field_names(Home) == ["street", "rooms", "notes"]
        assert accessor.field_names(Legacy) == ["name", "size"]
        assert accessor.field_names(Account) == ["fullName", "balance"]
        assert accessor.field_names(dict) == []

    def test_pydantic_aliases(self, accessor):
        account = Account(fullName="Ann")

        accessor.write(account, "fullName", "Bob")

        assert account.full_name == "Bob"
        assert accessor.read(account, "fullName") == "Bob"
        assert accessor.declared_type(Account, "fullName") is str


class TestCreateInstance:
    """Tests for destination instantiation."""

    def test_calls_constructor_when_all_params_have_defaults(self, accessor):
        assert accessor.create_instance(Factory).value == "default"

    def test_skips_constructor_with_required_params(self, accessor):
        instance = accessor.create_instance(Legacy)

        assert isinstance(instance, Legacy)
        assert not hasattr(instance, "name")

    def test_pydantic_model_construct(self, accessor):
        account = accessor.create_instance(Account)

        assert isinstance(account, Account)
        assert account.balance == 0

    @pytest.mark.parametrize("cls", [Shape, object])
    def test_rejects_abstract_classes(self, accessor, cls):
        with pytest.raises(MappingError):
            accessor.create_instance(cls)
