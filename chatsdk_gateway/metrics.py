"""Prometheus metrics for the chat SDK gateway.

Counters and histograms live in-process behind one lock and are rendered in
the Prometheus text format on ``/metrics``; there is no prometheus_client
dependency.
"""

import threading
from collections import defaultdict

from fastapi import APIRouter, Response

_lock = threading.Lock()

LabelKey = tuple[tuple[str, str], ...]

_counters: dict[str, dict[LabelKey, float]] = defaultdict(
    lambda: defaultdict(float),
)

_histogram_sums: dict[str, dict[LabelKey, float]] = defaultdict(
    lambda: defaultdict(float),
)
_histogram_counts: dict[str, dict[LabelKey, int]] = defaultdict(
    lambda: defaultdict(int),
)

# Upstream completions routinely run for tens of seconds.
LATENCY_BUCKETS = [0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0]
_histogram_buckets: dict[str, dict[LabelKey, list[int]]] = defaultdict(
    lambda: defaultdict(lambda: [0] * len(LATENCY_BUCKETS)),
)


def inc_counter(name: str, labels: dict[str, str], value: float = 1.0) -> None:
    key: LabelKey = tuple(sorted(labels.items()))
    with _lock:
        _counters[name][key] += value


def observe_histogram(name: str, labels: dict[str, str], value: float) -> None:
    key: LabelKey = tuple(sorted(labels.items()))
    with _lock:
        _histogram_sums[name][key] += value
        _histogram_counts[name][key] += 1
        buckets = _histogram_buckets[name][key]
        for i, bound in enumerate(LATENCY_BUCKETS):
            if value <= bound:
                buckets[i] += 1


def counter_value(name: str, labels: dict[str, str]) -> float:
    key: LabelKey = tuple(sorted(labels.items()))
    with _lock:
        return _counters.get(name, {}).get(key, 0.0)


def reset_metrics() -> None:
    with _lock:
        _counters.clear()
        _histogram_sums.clear()
        _histogram_counts.clear()
        _histogram_buckets.clear()


def _format_labels(label_pairs: LabelKey) -> str:
    if not label_pairs:
        return ""
    parts = [f'{k}="{v}"' for k, v in label_pairs]
    return "{" + ",".join(parts) + "}"


def render_metrics() -> str:
    lines: list[str] = []
    with _lock:
        for name, label_map in sorted(_counters.items()):
            lines.append(f"# TYPE {name} counter")
            for label_pairs, value in sorted(label_map.items()):
                lines.append(f"{name}{_format_labels(label_pairs)} {value}")

        for name in sorted(_histogram_sums.keys()):
            lines.append(f"# TYPE {name} histogram")
            for label_pairs in sorted(_histogram_sums[name].keys()):
                base_lbl = _format_labels(label_pairs)
                count = _histogram_counts[name][label_pairs]

                cumulative = 0
                for bound, hits in zip(
                    LATENCY_BUCKETS, _histogram_buckets[name][label_pairs], strict=True
                ):
                    cumulative += hits
                    bl: LabelKey = tuple(sorted({**dict(label_pairs), "le": str(bound)}.items()))
                    lines.append(f"{name}_bucket{_format_labels(bl)} {cumulative}")

                il: LabelKey = tuple(sorted({**dict(label_pairs), "le": "+Inf"}.items()))
                lines.append(f"{name}_bucket{_format_labels(il)} {count}")
                lines.append(f"{name}_sum{base_lbl} {_histogram_sums[name][label_pairs]}")
                lines.append(f"{name}_count{base_lbl} {count}")

    lines.append("")
    return "\n".join(lines)


def record_request(
    dialect: str,
    model: str,
    outcome: str,
    status_code: int,
    latency_s: float,
    stream: bool,
    response_chars: int = 0,
) -> None:
    """Record the metrics for one finished client request."""
    base_labels = {"dialect": dialect, "model": model}
    inc_counter(
        "csg_requests_total",
        {
            **base_labels,
            "outcome": outcome,
            "status": str(status_code),
            "stream": "true" if stream else "false",
        },
    )
    observe_histogram("csg_request_duration_seconds", base_labels, latency_s)
    if response_chars > 0:
        inc_counter("csg_response_chars_total", base_labels, float(response_chars))


def record_rotation(reason: str) -> None:
    inc_counter("csg_egress_rotations_total", {"reason": reason})


metrics_router = APIRouter()


@metrics_router.get("/metrics")
def prometheus_metrics() -> Response:
    return Response(
        content=render_metrics(),
        media_type="text/plain; charset=utf-8",
    )
