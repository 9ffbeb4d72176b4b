# core/metrics.py — in-process catalog telemetry and RBAC auditing

import time
import threading
import logging
from typing import Dict, Any, Optional, Tuple
from dataclasses import dataclass, field
from contextlib import contextmanager

# Upper bounds in milliseconds; anything slower lands in "+Inf"
LATENCY_BUCKETS_MS: Tuple[float, ...] = (1.0, 5.0, 10.0, 25.0, 50.0, 100.0, 250.0, 500.0, 1000.0, 5000.0)
OVERFLOW_BUCKET = "+Inf"

Labels = Optional[Dict[str, str]]
SeriesKey = Tuple[str, Tuple[Tuple[str, str], ...]]


def _bucket_name(bound: float) -> str:
    return f"{bound:g}"


@dataclass
class _Counter:
    labels: Dict[str, str]
    value: int = 0
    last_updated: float = field(default_factory=time.time)


@dataclass
class _Histogram:
    labels: Dict[str, str]
    # One slot per bound plus the overflow slot
    counts: list = field(default_factory=lambda: [0] * (len(LATENCY_BUCKETS_MS) + 1))
    sum: float = 0.0
    count: int = 0
    last_updated: float = field(default_factory=time.time)

    def stats(self) -> Dict[str, Any]:
        names = [_bucket_name(b) for b in LATENCY_BUCKETS_MS] + [OVERFLOW_BUCKET]
        return {
            "count": self.count,
            "sum": self.sum,
            "avg": self.sum / self.count if self.count else 0.0,
            "buckets": dict(zip(names, self.counts)),
        }


class MetricsCollector:
    """Thread-safe store of labelled counters and latency histograms."""

    def __init__(self):
        self._lock = threading.RLock()
        self._counters: Dict[SeriesKey, _Counter] = {}
        self._histograms: Dict[SeriesKey, _Histogram] = {}
        self._start_time = time.time()

    @staticmethod
    def _key(name: str, labels: Labels) -> SeriesKey:
        return name, tuple(sorted((labels or {}).items()))

    def increment_counter(self, name: str, value: int = 1, labels: Labels = None):
        with self._lock:
            key = self._key(name, labels)
            counter = self._counters.get(key)
            if counter is None:
                counter = self._counters[key] = _Counter(labels=dict(labels or {}))
            counter.value += value
            counter.last_updated = time.time()

    def observe_histogram(self, name: str, value: float, labels: Labels = None):
        with self._lock:
            key = self._key(name, labels)
            histogram = self._histograms.get(key)
            if histogram is None:
                histogram = self._histograms[key] = _Histogram(labels=dict(labels or {}))

            histogram.sum += value
            histogram.count += 1
            histogram.last_updated = time.time()

            slot = len(LATENCY_BUCKETS_MS)
            for i, bound in enumerate(LATENCY_BUCKETS_MS):
                if value <= bound:
                    slot = i
                    break
            histogram.counts[slot] += 1

    def get_counter(self, name: str, labels: Labels = None) -> int:
        with self._lock:
            counter = self._counters.get(self._key(name, labels))
            return counter.value if counter else 0

    def get_histogram_stats(self, name: str, labels: Labels = None) -> Dict[str, Any]:
        with self._lock:
            histogram = self._histograms.get(self._key(name, labels))
            return (histogram or _Histogram(labels={})).stats()

    def get_all_metrics(self) -> Dict[str, Any]:
        """Every series grouped by metric name, as served by /debug/metrics."""
        with self._lock:
            counters: Dict[str, list] = {}
            for (name, _), counter in self._counters.items():
                counters.setdefault(name, []).append({
                    "value": counter.value,
                    "labels": counter.labels,
                    "last_updated": counter.last_updated,
                })

            histograms: Dict[str, list] = {}
            for (name, _), histogram in self._histograms.items():
                histograms.setdefault(name, []).append({
                    "stats": histogram.stats(),
                    "labels": histogram.labels,
                    "last_updated": histogram.last_updated,
                })

            return {
                "counters": counters,
                "histograms": histograms,
                "uptime_seconds": time.time() - self._start_time,
                "timestamp": time.time(),
            }

    def reset_metrics(self):
        with self._lock:
            self._counters.clear()
            self._histograms.clear()
            self._start_time = time.time()


# Process-wide collector
_metrics = MetricsCollector()

audit_logger = logging.getLogger("rbac.audit")


def increment_counter(name: str, value: int = 1, labels: Labels = None):
    _metrics.increment_counter(name, value, labels)


def observe_histogram(name: str, value: float, labels: Labels = None):
    _metrics.observe_histogram(name, value, labels)


def get_counter(name: str, labels: Labels = None) -> int:
    return _metrics.get_counter(name, labels)


def get_histogram_stats(name: str, labels: Labels = None) -> Dict[str, Any]:
    return _metrics.get_histogram_stats(name, labels)


def get_all_metrics() -> Dict[str, Any]:
    return _metrics.get_all_metrics()


def reset_metrics():
    _metrics.reset_metrics()


@contextmanager
def time_operation(operation_name: str, labels: Labels = None):
    """Record the duration of the block as `<operation_name>_latency_ms`, even on error."""
    start = time.perf_counter()
    try:
        yield
    finally:
        observe_histogram(f"{operation_name}_latency_ms", (time.perf_counter() - start) * 1000, labels)


# ============================================================================
# Catalog Metrics
# ============================================================================

def record_api_call(endpoint: str, method: str, status_code: int, latency_ms: float):
    """Count a served request and its latency; endpoint is the route template."""
    increment_counter("api_calls_total", labels={"endpoint": endpoint, "method": method, "status": str(status_code)})
    observe_histogram("api_call_latency_ms", latency_ms, labels={"endpoint": endpoint, "method": method})


def record_error(error_type: str):
    increment_counter("errors_total", labels={"error_type": error_type})


def record_storage_error(operation: str, error_type: str):
    increment_counter("storage.errors", labels={"operation": operation})
    increment_counter("storage.errors.by_type", labels={"error_type": error_type})


def record_visibility_filtered(outcome: str, role: str):
    """
    Record a single-book read refused by the visibility policy.

    Args:
        outcome: 'not_found' (status outside the role's set) or
            'forbidden' (restricted and not owned)
        role: Caller's role
    """
    increment_counter("visibility.refused", labels={"outcome": outcome})
    increment_counter("visibility.refused.by_role", labels={"role": role})


# ============================================================================
# RBAC Metrics and Auditing
# ============================================================================

def record_rbac_resolution(success: bool = True, auth_method: str = "unknown"):
    increment_counter("rbac.resolutions", labels={"success": str(success).lower()})
    increment_counter("rbac.resolutions.by_method", labels={"method": auth_method})


def record_role_distribution(role: str):
    increment_counter("rbac.role_distribution", labels={"role": role})


def record_rbac_check(allowed: bool, capability: str, role: str, route: str = ""):
    """
    Record a guard decision.

    Args:
        allowed: Whether access was granted
        capability: Capability label checked by the guard
        role: Caller's role
        route: Route template (never the raw path)
    """
    if allowed:
        increment_counter("rbac.allowed")
        increment_counter("rbac.allowed.by_capability", labels={"capability": capability})
        return

    increment_counter("rbac.denied")
    increment_counter("rbac.denied.by_capability", labels={"capability": capability})
    increment_counter("rbac.denied.by_role", labels={"role": role})
    if route:
        increment_counter("rbac.denied.by_route", labels={"route": route})


def audit_rbac_denial(
    capability: str,
    user_id: Optional[int],
    role: str,
    route: str,
    method: str = "unknown",
    metadata: Optional[Dict[str, Any]] = None
):
    """
    Emit a structured audit entry for a denied guard check.

    The entry rides on the `rbac.audit` logger under `extra["audit"]` so log
    shippers can index it without parsing the message.
    """
    who = user_id if user_id is not None else "anonymous"
    audit_entry = {
        "event": "rbac_denial",
        "capability": capability,
        "user_id": who,
        "role": role,
        "route": route,
        "method": method,
        "timestamp": time.time(),
    }
    if metadata:
        audit_entry["metadata"] = metadata

    audit_logger.warning(
        f"RBAC_DENIAL capability={capability} user={who} "
        f"role={role} route={method} {route}",
        extra={"audit": audit_entry}
    )

    increment_counter("rbac.audit.denials")
    increment_counter("rbac.audit.denials.by_capability", labels={"capability": capability})


# Counter name prefix -> section of the /debug/metrics RBAC view
_RBAC_SECTIONS = (
    ("rbac.allowed", "authorization"),
    ("rbac.denied", "authorization"),
    ("rbac.resolutions", "resolutions"),
    ("rbac.role_distribution", "role_distribution"),
    ("rbac.audit", "audit"),
    ("visibility.", "visibility"),
)


def get_rbac_metrics() -> Dict[str, Any]:
    """Authorization, resolution, visibility and audit counters grouped by section."""
    grouped: Dict[str, Dict[str, Any]] = {section: {} for _, section in _RBAC_SECTIONS}
    for name, series in get_all_metrics()["counters"].items():
        for prefix, section in _RBAC_SECTIONS:
            if name.startswith(prefix):
                grouped[section][name] = series
                break
    return grouped
