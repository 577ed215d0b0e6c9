from __future__ import annotations

from typing import Any, Dict, Optional

from relcheck.core.ports import MetricsSink

try:
    from opentelemetry.metrics import get_meter  # type: ignore
except Exception:  # pragma: no cover
    get_meter = None  # type: ignore


class OpenTelemetryMetrics(MetricsSink):
    """OpenTelemetry-based MetricsSink.

    Creates:
      - Counter: relcheck_checks_total (attributes: decision)
      - Histogram: relcheck_check_seconds (unit: s)
    """

    _counter: Optional[Any]
    _hist: Optional[Any]

    def __init__(self) -> None:
        self._counter = None
        self._hist = None

        if get_meter is None:  # pragma: no cover
            return

        meter = get_meter("relcheck.metrics")
        try:
            self._counter = meter.create_counter(  # type: ignore[attr-defined]
                name="relcheck_checks_total",
                description="Total relationship checks by decision.",
            )
        except Exception:  # pragma: no cover
            self._counter = None

        try:
            self._hist = meter.create_histogram(  # type: ignore[attr-defined]
                name="relcheck_check_seconds",
                description="Relationship check duration in seconds.",
                unit="s",
            )
        except Exception:  # pragma: no cover
            self._hist = None

    # -- MetricsSink ------------------------------------------------------------

    def inc(self, name: str, labels: Dict[str, str] | None = None) -> None:
        if self._counter is None:
            return
        decision = (labels or {}).get("decision", "unknown")
        try:
            self._counter.add(1, {"decision": decision})  # type: ignore[attr-defined]
        except Exception:  # pragma: no cover
            pass

    def observe(self, name: str, value: float, labels: Dict[str, str] | None = None) -> None:
        if self._hist is None:
            return
        decision = (labels or {}).get("decision", "unknown")
        try:
            self._hist.record(float(value), {"decision": decision})  # type: ignore[attr-defined]
        except Exception:  # pragma: no cover
            pass
