from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

# Bookkeeping fields that are numeric but not worth a curve.
_NON_SERIES_KEYS = frozenset(
    {"event", "epoch", "global_step", "sample", "train_size", "valid_size", "test_size", "layers", "epochs"}
)

# Metrics plotted when none are requested, in panel order.
DEFAULT_METRICS = ("train/loss", "train/lr", "valid/acc", "test/acc")


@dataclass(frozen=True)
class MetricSeries:
    name: str
    xs: list[float]
    ys: list[float]


def _is_number(x: Any) -> bool:
    return isinstance(x, (int, float)) and not isinstance(x, bool)


def read_jsonl_metrics_records(path: str | Path) -> list[dict[str, Any]]:
    """Read records written by JsonlFileMetricsSink; malformed lines are skipped."""

    records: list[dict[str, Any]] = []
    with Path(path).open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                rec = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(rec, dict) and isinstance(rec.get("metrics"), dict) and _is_number(rec.get("step")):
                records.append(rec)
    return records


def split_runs(records: list[dict[str, Any]], *, fallback: str) -> dict[str, list[dict[str, Any]]]:
    """Group records by their `run` field (records without one go to `fallback`)."""

    runs: dict[str, list[dict[str, Any]]] = {}
    for rec in records:
        name = rec.get("run") if isinstance(rec.get("run"), str) and rec["run"].strip() else fallback
        runs.setdefault(name, []).append(rec)
    return runs


def extract_metric_series(
    records: list[dict[str, Any]],
    *,
    x_axis: str = "step",
    include_metrics: Iterable[str] | None = None,
) -> dict[str, MetricSeries]:
    """Numeric time series keyed by metric name.

    x_axis is "step" (the record step, i.e. global batch count) or "epoch"
    (records without an epoch are skipped). Series with fewer than two points
    are dropped.
    """

    x_axis = x_axis.strip().lower()
    if x_axis not in {"step", "epoch"}:
        raise ValueError(f"x_axis must be one of: step, epoch (got {x_axis!r})")
    include = {m.strip() for m in include_metrics if m and m.strip()} if include_metrics is not None else None

    points: dict[str, list[tuple[float, float]]] = {}
    for rec in records:
        metrics = rec["metrics"]
        if metrics.get("event"):
            continue
        x = rec["step"] if x_axis == "step" else metrics.get("epoch")
        if not _is_number(x):
            continue
        for k, v in metrics.items():
            if k in _NON_SERIES_KEYS or not _is_number(v):
                continue
            if include is not None and k not in include:
                continue
            points.setdefault(k, []).append((float(x), float(v)))

    out: dict[str, MetricSeries] = {}
    for name, pts in points.items():
        if len(pts) < 2:
            continue
        pts.sort(key=lambda p: p[0])
        out[name] = MetricSeries(name=name, xs=[p[0] for p in pts], ys=[p[1] for p in pts])
    return out


def plot_metrics_from_logs(
    *,
    log_paths: list[str | Path],
    out_path: str | Path | None,
    show: bool,
    x_axis: str = "step",
    metrics: list[str] | None = None,
    title: str | None = None,
) -> Path | None:
    """Plot one panel per metric from one or more JSONL logs.

    If show is False, out_path must be provided and the figure is saved there.
    Returns the saved path (or None if nothing was saved).
    """

    if not show and not out_path:
        raise ValueError("out_path is required when show=False")
    if not log_paths:
        raise ValueError("No log files provided")

    # Choose backend before importing pyplot.
    import matplotlib

    if not show:
        matplotlib.use("Agg", force=True)

    import matplotlib.pyplot as plt  # pylint: disable=import-error

    runs: list[tuple[str, dict[str, MetricSeries]]] = []
    for lp in log_paths:
        p = Path(lp)
        for run_name, recs in split_runs(read_jsonl_metrics_records(p), fallback=p.stem).items():
            runs.append((run_name, extract_metric_series(recs, x_axis=x_axis, include_metrics=metrics)))

    wanted = [m for m in (metrics or DEFAULT_METRICS) if m]
    names = [m for m in wanted if any(m in series for _, series in runs)]
    if not names:
        raise ValueError("No matching numeric metrics found to plot")

    fig, axes = plt.subplots(
        nrows=len(names),
        ncols=1,
        figsize=(11.0, max(3.0, 3.0 * len(names))),
        sharex=True,
        constrained_layout=True,
        squeeze=False,
    )
    for ax, name in zip(axes[:, 0], names, strict=True):
        for run_name, series in runs:
            s = series.get(name)
            if s is None:
                continue
            ax.plot(s.xs, s.ys, marker="o", markersize=2.5, linewidth=1.5, label=run_name if len(runs) > 1 else name)
        ax.set_title(name)
        ax.grid(True, alpha=0.3)
        ax.legend(loc="best", fontsize=9)
    axes[-1, 0].set_xlabel(x_axis)

    if title:
        fig.suptitle(title)

    saved: Path | None = None
    if out_path:
        saved = Path(out_path)
        saved.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(saved, dpi=140)

    if show:
        plt.show()
    else:
        plt.close(fig)

    return saved
