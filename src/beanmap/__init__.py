from beanmap.config import (
    ConverterBinding,
    FieldKind,
    FieldMapping,
    MapperSettings,
    Relationship,
    TypeMapping,
)
from beanmap.converters import ConfigurableCustomConverter, CustomConverter
from beanmap.errors import ConfigurationError, ConversionError, MappingError, ValidationError
from beanmap.events import EventListener, EventType, MappingEvent
from beanmap.fields import CustomFieldMapper
from beanmap.log import configure_logging
from beanmap.mapper import Mapper
from beanmap.stats import StatisticsManager, StatisticType

__all__ = [
    "ConfigurableCustomConverter",
    "ConfigurationError",
    "ConversionError",
    "ConverterBinding",
    "CustomConverter",
    "CustomFieldMapper",
    "EventListener",
    "EventType",
    "FieldKind",
    "FieldMapping",
    "Mapper",
    "MapperSettings",
    "MappingError",
    "MappingEvent",
    "Relationship",
    "StatisticType",
    "StatisticsManager",
    "TypeMapping",
    "ValidationError",
    "configure_logging",
]
