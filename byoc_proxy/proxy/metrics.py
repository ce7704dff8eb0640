"""Thread-safe event collector for the gateway's /stats endpoint."""

from __future__ import annotations

import statistics
import threading
import time
from collections import Counter, deque
from datetime import datetime, timezone


class ProxyMetrics:
    """Collects structured events from the request pipeline.

    Events are plain dicts with a ``type`` key: ``request``, ``response``,
    ``error`` or ``filtered_event``.  Only the most recent *max_events* are
    kept; aggregate counters cover the whole process lifetime.
    """

    def __init__(self, max_events: int = 1000) -> None:
        self.start_time: float = time.time()
        self._events: deque[dict] = deque(maxlen=max_events)
        self._lock = threading.Lock()
        self._seq = 0
        self._totals: Counter[str] = Counter()
        self._per_route: dict[str, Counter[str]] = {}

    def record(self, event: dict) -> None:
        """Append an event (thread-safe). Adds ``_seq`` and ``ts``."""
        with self._lock:
            event = dict(event)  # shallow copy to avoid caller mutation
            event["_seq"] = self._seq
            if "ts" not in event:
                event["ts"] = datetime.now(timezone.utc).isoformat()
            self._seq += 1
            self._events.append(event)

            etype = event.get("type", "unknown")
            self._totals[etype] += 1
            route = event.get("route")
            if route:
                self._per_route.setdefault(route, Counter())[etype] += 1

    def events_since(self, seq: int) -> list[dict]:
        """Return retained events with ``_seq`` > *seq*."""
        with self._lock:
            return [e for e in self._events if e["_seq"] > seq]

    def snapshot(self) -> dict:
        """Aggregate stats for the /stats endpoint."""
        with self._lock:
            responses = [e for e in self._events if e.get("type") == "response"]
            errors = [e for e in self._events if e.get("type") == "error"]
            upstream_values = [r["upstream_ms"] for r in responses if "upstream_ms" in r]
            error_kinds = Counter(e.get("kind", "unknown") for e in errors)

            return {
                "type": "snapshot",
                "uptime_s": round(time.time() - self.start_time, 1),
                "total_requests": self._totals["request"],
                "total_responses": self._totals["response"],
                "total_errors": self._totals["error"],
                "total_filtered_events": self._totals["filtered_event"],
                "avg_upstream_ms": (
                    round(statistics.mean(upstream_values), 1) if upstream_values else 0
                ),
                "error_kinds": dict(error_kinds),
                "routes": {
                    route: dict(counts) for route, counts in sorted(self._per_route.items())
                },
                "recent_responses": list(responses[-50:]),
            }
