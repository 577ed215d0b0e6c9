from __future__ import annotations

from typing import Any, Dict, Optional

from relcheck.core.ports import MetricsSink

try:
    from prometheus_client import Counter, Histogram  # type: ignore
except Exception:  # pragma: no cover
    Counter = Histogram = None  # type: ignore


class PrometheusMetrics(MetricsSink):
    """Prometheus-based MetricsSink.

    Exposes:
      - relcheck_checks_total{decision="allow|deny"}
      - relcheck_check_seconds{decision=...} (Histogram)
    """

    _counter: Optional[Any]
    _hist: Optional[Any]

    def __init__(self, registry: Any | None = None) -> None:
        self._counter = None
        self._hist = None

        # create instruments only if the client is available
        if Counter is None or Histogram is None:  # pragma: no cover
            return

        kwargs: Dict[str, Any] = {}
        if registry is not None:
            kwargs["registry"] = registry
        self._counter = Counter(
            "relcheck_checks_total",
            "Total relationship checks by decision.",
            labelnames=("decision",),
            **kwargs,
        )
        self._hist = Histogram(
            "relcheck_check_seconds",
            "Relationship check duration in seconds.",
            labelnames=("decision",),
            **kwargs,
        )

    # -- MetricsSink ------------------------------------------------------------

    def inc(self, name: str, labels: Dict[str, str] | None = None) -> None:
        """Increment ``relcheck_checks_total``; *name* is informational."""
        if self._counter is None:
            return
        decision = (labels or {}).get("decision", "unknown")
        try:
            self._counter.labels(decision=decision).inc()  # type: ignore[call-arg]
        except Exception:  # pragma: no cover
            # never raise from metrics path
            pass

    def observe(self, name: str, value: float, labels: Dict[str, str] | None = None) -> None:
        if self._hist is None:
            return
        decision = (labels or {}).get("decision", "unknown")
        try:
            self._hist.labels(decision=decision).observe(float(value))  # type: ignore[call-arg]
        except Exception:  # pragma: no cover
            pass
