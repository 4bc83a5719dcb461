from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Iterable, List, Optional

if TYPE_CHECKING:
    from beanmap.config import FieldMapping, TypeMapping


class EventType(str, Enum):
    MAPPING_STARTED = "mapping-started"
    MAPPING_PRE_WRITING_DEST_VALUE = "mapping-pre-write"
    MAPPING_POST_WRITING_DEST_VALUE = "mapping-post-write"
    MAPPING_FINISHED = "mapping-finished"


@dataclass(frozen=True)
class MappingEvent:
    type: EventType
    type_mapping: Optional["TypeMapping"]
    field_mapping: Optional["FieldMapping"]
    source: Any
    destination: Any
    destination_value: Any = None


class EventListener:
    """Override the hooks you care about."""

    def mapping_started(self, event: MappingEvent) -> None:
        pass

    def pre_writing_destination_value(self, event: MappingEvent) -> None:
        pass

    def post_writing_destination_value(self, event: MappingEvent) -> None:
        pass

    def mapping_finished(self, event: MappingEvent) -> None:
        pass


_HOOKS = {
    EventType.MAPPING_STARTED: "mapping_started",
    EventType.MAPPING_PRE_WRITING_DEST_VALUE: "pre_writing_destination_value",
    EventType.MAPPING_POST_WRITING_DEST_VALUE: "post_writing_destination_value",
    EventType.MAPPING_FINISHED: "mapping_finished",
}


class EventManager:
    def __init__(self, listeners: Iterable[EventListener] = ()) -> None:
        self.listeners: List[EventListener] = list(listeners)

    def fire(self, event: MappingEvent) -> None:
        hook = _HOOKS[event.type]
        for listener in self.listeners:
            getattr(listener, hook)(event)
