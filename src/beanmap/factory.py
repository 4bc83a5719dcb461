from __future__ import annotations

from typing import Any, Callable, Dict, Optional, Protocol, runtime_checkable

from beanmap.accessors import Accessor
from beanmap.errors import ConfigurationError


@runtime_checkable
class DestinationFactory(Protocol):
    def create(
        self,
        source: Any,
        source_type: type,
        declared_destination_type: type,
        destination_type: type,
        factory: Optional[Any] = None,
        factory_id: Optional[str] = None,
        create_method: Optional[str] = None,
    ) -> Any: ...


class DefaultDestinationFactory:
    """Builds destination instances.

    Order: explicit factory (callable or one registered under ``factory_id``),
    then ``create_method`` on the destination class, then the accessor.
    A factory is called as ``factory(source, source_type, factory_id)``.
    """

    def __init__(
        self,
        accessor: Accessor,
        factories: Optional[Dict[str, Callable[..., Any]]] = None,
    ) -> None:
        self.accessor = accessor
        self.factories = dict(factories or {})

    def create(
        self,
        source: Any,
        source_type: type,
        declared_destination_type: type,
        destination_type: type,
        factory: Optional[Any] = None,
        factory_id: Optional[str] = None,
        create_method: Optional[str] = None,
    ) -> Any:
        if factory is None and factory_id is not None:
            if factory_id not in self.factories:
                raise ConfigurationError(f"Destination factory not found with id: {factory_id}")
            factory = self.factories[factory_id]
        if factory is not None:
            return factory(source, source_type, factory_id)
        if create_method:
            return getattr(destination_type, create_method)()
        return self.accessor.create_instance(destination_type)
