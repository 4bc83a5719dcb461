from __future__ import annotations

from enum import Enum
from typing import Dict, Optional, Protocol, Union, runtime_checkable

from prometheus_client import CollectorRegistry, Counter, Histogram


class StatisticType(str, Enum):
    MAPPING_SUCCESS_COUNT = "mapping-success-count"
    MAPPING_FAILURE_COUNT = "mapping-failure-count"
    FIELD_MAPPING_SUCCESS_COUNT = "field-mapping-success-count"
    FIELD_MAPPING_FAILURE_COUNT = "field-mapping-failure-count"
    FIELD_MAPPING_FAILURE_IGNORED_COUNT = "field-mapping-failure-ignored-count"
    CUSTOM_CONVERTER_SUCCESS_COUNT = "custom-converter-success-count"
    CUSTOM_CONVERTER_TIME = "custom-converter-time"


# Observed in milliseconds.
TIMED_STATISTICS = (StatisticType.CUSTOM_CONVERTER_TIME,)

CONVERTER_TIME_BUCKETS = (0.1, 0.5, 1.0, 5.0, 10.0, 50.0, 100.0, 500.0, 1000.0)


@runtime_checkable
class MetricsSink(Protocol):
    def increment(self, statistic: StatisticType, value: float = 1) -> None: ...


class StatisticsManager:
    """Prometheus counters shared by every mapping call.

    Each manager registers its metrics in its own CollectorRegistry unless
    one is passed in. Timed statistics are histograms and ``get`` returns
    their sum.
    """

    def __init__(self, enabled: bool = True, registry: Optional[CollectorRegistry] = None) -> None:
        self.enabled = enabled
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[StatisticType, Union[Counter, Histogram]] = {}
        self._register_metrics()

    def increment(self, statistic: StatisticType, value: float = 1) -> None:
        if not self.enabled:
            return
        metric = self._metrics[statistic]
        if isinstance(metric, Histogram):
            metric.observe(value)
        else:
            metric.inc(value)

    def get(self, statistic: StatisticType) -> float:
        suffix = "_sum" if statistic in TIMED_STATISTICS else "_total"
        return self.registry.get_sample_value(metric_name(statistic) + suffix) or 0.0

    def clear(self) -> None:
        for metric in self._metrics.values():
            self.registry.unregister(metric)
        self._register_metrics()

    # region Private methods
    # These methods are not intended to be used outside of this class.

    def _register_metrics(self) -> None:
        for statistic in StatisticType:
            description = statistic.value.replace("-", " ").capitalize()
            if statistic in TIMED_STATISTICS:
                self._metrics[statistic] = Histogram(
                    metric_name(statistic),
                    f"{description} in milliseconds",
                    buckets=CONVERTER_TIME_BUCKETS,
                    registry=self.registry,
                )
            else:
                self._metrics[statistic] = Counter(
                    metric_name(statistic), description, registry=self.registry
                )

    # endregion


def metric_name(statistic: StatisticType) -> str:
    return "beanmap_" + statistic.name.lower()
