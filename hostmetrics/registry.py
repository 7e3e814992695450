"""Metrics registry backed by prometheus_client."""
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
import logging
import re
import threading

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest
from prometheus_client.core import GaugeMetricFamily

from hostmetrics.errors import DuplicateSeriesError, LabelArityError, RegistrationError

logger = logging.getLogger(__name__)

CONTENT_TYPE = CONTENT_TYPE_LATEST

SUPPORTED_KINDS = ("gauge",)

_METRIC_NAME = re.compile(r'^[a-zA-Z_:][a-zA-Z0-9_:]*$')
_LABEL_NAME = re.compile(r'^[a-zA-Z_][a-zA-Z0-9_]*$')


@dataclass(frozen=True)
class SeriesHandle:
    """Reference to a registered series, returned by ``register``."""
    name: str
    kind: str
    label_keys: Tuple[str, ...]
    documentation: str = ""


def validate_label_names(label_keys: Iterable[str]):
    """
    Validate label names are Prometheus-safe.

    Label names must match [a-zA-Z_][a-zA-Z0-9_]*, must not use the reserved
    ``__`` prefix and must not repeat.
    """
    seen = set()
    for key in label_keys:
        if not _LABEL_NAME.match(key) or key.startswith("__"):
            raise RegistrationError(f"Invalid label name: {key!r}")
        if key in seen:
            raise RegistrationError(f"Duplicate label name: {key!r}")
        seen.add(key)


class _SeriesCollector:
    """Custom collector yielding one gauge family per registered series."""

    def __init__(self, registry: "MetricsRegistry"):
        self._registry = registry

    def collect(self):
        for handle, values in self._registry._snapshot():
            family = GaugeMetricFamily(
                handle.name,
                handle.documentation or handle.name,
                labels=list(handle.label_keys)
            )
            for label_values, value in values:
                family.add_metric(list(label_values), value)
            yield family


class MetricsRegistry:
    """
    Set of named gauge series for one exporter instance.

    Every series holds one value per label-value tuple; writes overwrite.
    Values are written by the sampler and read by any number of HTTP
    requests, so all access goes through a single lock. A render copies
    values under the lock and encodes outside of it.

    Entries for label tuples that stop appearing (an unmounted partition,
    for instance) are kept until overwritten or the process restarts.
    """

    def __init__(self):
        # Custom registry keeps default Python/process metrics out unless asked for
        self.collector_registry = CollectorRegistry()
        self._lock = threading.Lock()
        self._handles: Dict[str, SeriesHandle] = {}
        self._values: Dict[str, Dict[Tuple[str, ...], float]] = {}
        self.collector_registry.register(_SeriesCollector(self))

    def register(
        self,
        name: str,
        kind: str = "gauge",
        label_keys: Sequence[str] = (),
        documentation: str = ""
    ) -> SeriesHandle:
        """Register a series, or return the existing handle for an identical one."""
        if kind not in SUPPORTED_KINDS:
            raise RegistrationError(f"Unsupported series kind {kind!r} for {name!r}")
        if not _METRIC_NAME.match(name):
            raise RegistrationError(f"Invalid metric name: {name!r}")

        label_keys = tuple(label_keys)
        validate_label_names(label_keys)

        with self._lock:
            existing = self._handles.get(name)
            if existing is not None:
                if existing.kind == kind and existing.label_keys == label_keys:
                    return existing
                raise DuplicateSeriesError(
                    f"Series {name!r} already registered as {existing.kind} "
                    f"with labels {list(existing.label_keys)}"
                )

            handle = SeriesHandle(name, kind, label_keys, documentation)
            self._handles[name] = handle
            self._values[name] = {}

        logger.debug(f"Registered series: {name} with labels {list(label_keys)}")
        return handle

    def _check(self, handle: SeriesHandle, label_values: Sequence) -> Tuple[str, ...]:
        if self._handles.get(handle.name) != handle:
            raise RegistrationError(f"Series {handle.name!r} is not registered in this registry")
        if len(label_values) != len(handle.label_keys):
            raise LabelArityError(
                f"Series {handle.name!r} expects {len(handle.label_keys)} label values "
                f"{list(handle.label_keys)}, got {len(label_values)}"
            )
        return tuple(str(v) for v in label_values)

    def set(self, handle: SeriesHandle, label_values: Sequence, value: float):
        """Overwrite the value for one label tuple of a series."""
        key = self._check(handle, label_values)
        value = float(value)
        with self._lock:
            self._values[handle.name][key] = value

    def get(self, handle: SeriesHandle, label_values: Sequence = ()) -> Optional[float]:
        """Return the current value for a label tuple, or None if never set."""
        key = self._check(handle, label_values)
        with self._lock:
            return self._values[handle.name].get(key)

    def series(self) -> List[SeriesHandle]:
        """All registered series in registration order."""
        with self._lock:
            return list(self._handles.values())

    def _snapshot(self) -> List[Tuple[SeriesHandle, List[Tuple[Tuple[str, ...], float]]]]:
        """Copy of all set values, series in registration order, label tuples sorted."""
        with self._lock:
            return [
                (handle, sorted(self._values[name].items()))
                for name, handle in self._handles.items()
                if self._values[name]
            ]

    def render(self) -> bytes:
        """Render all series in the Prometheus text exposition format."""
        return generate_latest(self.collector_registry)
