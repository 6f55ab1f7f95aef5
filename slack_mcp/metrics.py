# Simple in-memory metrics (Prometheus exposition)
from collections import defaultdict
from typing import Dict, List

_metrics: Dict[tuple, int] = defaultdict(int)
_metrics_sum: Dict[tuple, float] = defaultdict(float)
_metrics_count: Dict[tuple, int] = defaultdict(int)
_hist_buckets: Dict[tuple, int] = defaultdict(int)

_HIST_BUCKETS_MS = [5, 10, 20, 50, 100, 200, 500, 1000, 2000, 5000]

_COUNTERS = {
    "mcp_requests_total": "Total MCP requests",
    "mcp_auth_total": "Session authentication attempts by outcome",
    "oauth_tokens_issued_total": "Session tokens issued",
}
_HISTOGRAMS = {
    "mcp_http_request_duration_ms": "HTTP request latency by endpoint/status/tool",
    "mcp_tool_call_duration_ms": "Tool call latency by tool",
}


def _mkey(name: str, labels: Dict[str, str]) -> tuple:
    return (name, tuple(sorted(labels.items())))


def inc(name: str, **labels: str) -> None:
    _metrics[_mkey(name, labels)] += 1


def observe_hist(name: str, value_ms: float, **labels: str) -> None:
    v = float(value_ms)
    key = _mkey(name, labels)
    _metrics_sum[key] += v
    _metrics_count[key] += 1
    # cumulative buckets
    for b in _HIST_BUCKETS_MS:
        if v <= b:
            _hist_buckets[(name, key[1], str(b))] += 1
    _hist_buckets[(name, key[1], "+Inf")] += 1


def reset() -> None:
    for store in (_metrics, _metrics_sum, _metrics_count, _hist_buckets):
        store.clear()


def _label_str(label_pairs) -> str:
    return ",".join([f'{k}="{v}"' for k, v in label_pairs])


def render() -> str:
    lines: List[str] = []
    for metric, help_text in _COUNTERS.items():
        lines.append(f"# HELP {metric} {help_text}")
        lines.append(f"# TYPE {metric} counter")
        for (name, label_pairs), val in _metrics.items():
            if name != metric:
                continue
            lines.append(f"{name}{{{_label_str(label_pairs)}}} {val}")

    for name, help_text in _HISTOGRAMS.items():
        lines.append(f"# HELP {name} {help_text}")
        lines.append(f"# TYPE {name} histogram")
        groups: Dict[tuple, Dict[str, int]] = {}
        for (mname, label_pairs, le), cnt in _hist_buckets.items():
            if mname != name:
                continue
            groups.setdefault(label_pairs, {})[le] = cnt
        for label_pairs, buckets in groups.items():
            ordered = [(str(b), buckets.get(str(b), 0)) for b in _HIST_BUCKETS_MS] + [("+Inf", buckets.get("+Inf", 0))]
            for le, cnt in ordered:
                lbl = dict(label_pairs)
                lbl["le"] = le
                lines.append(f"{name}_bucket{{{_label_str(sorted(lbl.items()))}}} {cnt}")
            lines.append(f"{name}_sum{{{_label_str(label_pairs)}}} {_metrics_sum.get((name, label_pairs), 0.0)}")
            lines.append(f"{name}_count{{{_label_str(label_pairs)}}} {_metrics_count.get((name, label_pairs), 0)}")
    return "\n".join(lines) + "\n"
