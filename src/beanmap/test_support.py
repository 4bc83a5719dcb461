import json
import logging

import pytest
import structlog
from prometheus_client import CollectorRegistry

from beanmap import (
    ConfigurationError,
    ConversionError,
    EventListener,
    EventType,
    MapperSettings,
    MappingError,
    MappingEvent,
    StatisticsManager,
    StatisticType,
    configure_logging,
)
from beanmap.accessors import ObjectAccessor
from beanmap.events import EventManager
from beanmap.factory import DefaultDestinationFactory
from beanmap.session import MappingSession


class Widget:
    def __init__(self, label="plain"):
        self.label = label

    @classmethod
    def build(cls):
        return cls("built")


class SpecialWidget(Widget):
    pass


class OrderedListener(EventListener):
    def __init__(self, name, log):
        self.name = name
        self.log = log

    def mapping_started(self, event):
        self.log.append((self.name, event.type))


@pytest.fixture
def factory():
    return DefaultDestinationFactory(
        ObjectAccessor(),
        {"special": lambda source, source_type, factory_id: SpecialWidget(f"{factory_id}:{source}")},
    )


@pytest.fixture
def reset_logging():
    yield
    structlog.reset_defaults()
    logging.getLogger("beanmap").handlers = []
    logging.getLogger("beanmap").setLevel(logging.NOTSET)


class TestMappingSession:
    """Tests for the per-call visited set."""

    def test_lookup_matches_required_type(self):
        session = MappingSession()
        source = object()
        widget = Widget()

        session.record(source, widget)

        assert session.lookup(source, Widget) is widget
        assert session.lookup(source, SpecialWidget) is None
        assert session.lookup(object(), Widget) is None

    def test_record_is_idempotent(self):
        session = MappingSession()
        source, widget = object(), Widget()

        session.record(source, widget)
        session.record(source, widget)

        assert len(session.visited[id(source)]) == 1

    def test_latest_record_wins(self):
        session = MappingSession()
        source, first, second = object(), Widget("first"), Widget("second")

        session.record(source, first)
        session.record(source, second)

        assert session.lookup(source, Widget) is second

        session.record(source, first)

        assert session.lookup(source, Widget) is first
        assert len(session.visited[id(source)]) == 2

    def test_propagating_errors_are_tracked_by_identity(self):
        session = MappingSession()
        error = ValueError("x")

        session.propagate(error)

        assert session.is_propagating(error)
        assert not session.is_propagating(ValueError("x"))


class TestErrors:
    """Tests for the error hierarchy."""

    def test_root_cause_unwraps_mapping_errors(self):
        cause = KeyError("k")
        error = MappingError("outer", ConversionError("inner", cause))

        assert error.root_cause is cause
        assert isinstance(error.__cause__, ConversionError)

    def test_root_cause_without_cause(self):
        error = ConfigurationError("nothing")

        assert error.root_cause is error
        assert isinstance(error, RuntimeError)


class TestDestinationFactory:
    """Tests for destination creation."""

    def test_accessor_creates_by_default(self, factory):
        assert factory.create(None, object, Widget, Widget).label == "plain"

    def test_create_method(self, factory):
        assert factory.create(None, object, Widget, Widget, create_method="build").label == "built"

    def test_factory_id(self, factory):
        widget = factory.create("src", str, Widget, Widget, factory_id="special")

        assert isinstance(widget, SpecialWidget)
        assert widget.label == "special:src"

    def test_factory_callable(self, factory):
        widget = factory.create("src", str, Widget, Widget, factory=lambda s, t, i: Widget(s))

        assert widget.label == "src"

    def test_unknown_factory_id(self, factory):
        with pytest.raises(ConfigurationError):
            factory.create("src", str, Widget, Widget, factory_id="nope")


class TestEventsAndStatistics:
    """Tests for event fan-out and counters."""

    def test_listeners_are_called_in_order(self):
        log = []
        manager = EventManager([OrderedListener("first", log), OrderedListener("second", log)])

        manager.fire(MappingEvent(EventType.MAPPING_STARTED, None, None, "s", "d"))
        manager.fire(MappingEvent(EventType.MAPPING_FINISHED, None, None, "s", "d"))

        assert log == [("first", EventType.MAPPING_STARTED), ("second", EventType.MAPPING_STARTED)]

    def test_counters(self):
        metrics = StatisticsManager()

        metrics.increment(StatisticType.MAPPING_SUCCESS_COUNT)
        metrics.increment(StatisticType.CUSTOM_CONVERTER_TIME, 2.5)
        metrics.increment(StatisticType.CUSTOM_CONVERTER_TIME, 1.5)

        assert metrics.get(StatisticType.MAPPING_SUCCESS_COUNT) == 1
        assert metrics.get(StatisticType.CUSTOM_CONVERTER_TIME) == 4.0

        metrics.clear()

        assert metrics.get(StatisticType.MAPPING_SUCCESS_COUNT) == 0

    def test_counters_are_exposed_through_the_registry(self):
        registry = CollectorRegistry()
        metrics = StatisticsManager(registry=registry)

        metrics.increment(StatisticType.FIELD_MAPPING_FAILURE_COUNT, 2)
        metrics.increment(StatisticType.CUSTOM_CONVERTER_TIME, 3.0)

        assert registry.get_sample_value("beanmap_field_mapping_failure_count_total") == 2.0
        assert registry.get_sample_value("beanmap_custom_converter_time_count") == 1.0
        assert (
            registry.get_sample_value("beanmap_custom_converter_time_bucket", {"le": "5.0"})
            == 1.0
        )

    def test_managers_keep_separate_registries(self):
        first, second = StatisticsManager(), StatisticsManager()

        first.increment(StatisticType.MAPPING_SUCCESS_COUNT)

        assert second.get(StatisticType.MAPPING_SUCCESS_COUNT) == 0

    def test_disabled_statistics_are_not_recorded(self):
        metrics = StatisticsManager(enabled=False)

        metrics.increment(StatisticType.MAPPING_SUCCESS_COUNT)

        assert metrics.get(StatisticType.MAPPING_SUCCESS_COUNT) == 0


class TestLogging:
    """Tests for logging configuration."""

    def test_sets_level_and_handler(self, reset_logging):
        configure_logging(MapperSettings(log_level="debug"))

        logger = logging.getLogger("beanmap")
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1

    def test_json_output(self, reset_logging, capsys):
        configure_logging(MapperSettings(log_format="json"))

        structlog.get_logger("beanmap.test").info("type_mapping_registered", map_id="brief")

        record = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert record["event"] == "type_mapping_registered"
        assert record["map_id"] == "brief"
        assert record["level"] == "info"
        assert record["logger"] == "beanmap.test"
