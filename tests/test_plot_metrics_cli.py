from __future__ import annotations

import json
from pathlib import Path

import pytest

from jax_digit_classifier.adapters.right.metrics_plotting import (
    extract_metric_series,
    plot_metrics_from_logs,
    read_jsonl_metrics_records,
    split_runs,
)


def _write_log(path: Path, run: str | None = None) -> None:
    records = [
        {"step": 0, "metrics": {"event": "run_start", "command": "train"}},
        {"step": 200, "metrics": {"epoch": 1, "train/loss": 1.0, "train/lr": 0.098, "valid/acc": 0.4}},
        {"step": 400, "metrics": {"epoch": 1, "train/loss": 0.8, "train/lr": 0.096, "valid/acc": 0.5}},
        {"step": 450, "metrics": {"epoch": 1, "global_step": 450, "train/lr": 0.096, "valid/acc": 0.55}},
        {"step": 900, "metrics": {"epoch": 2, "global_step": 900, "train/lr": 0.092, "valid/acc": 0.7}},
        {"step": 900, "metrics": {"event": "final", "valid/acc": 0.7}},
    ]
    with path.open("w", encoding="utf-8") as f:
        for r in records:
            if run:
                r["run"] = run
            f.write(json.dumps(r))
            f.write("\n")
        f.write("not json\n")


def test_extract_metric_series_skips_events(tmp_path: Path) -> None:
    log_path = tmp_path / "run.jsonl"
    _write_log(log_path)

    records = read_jsonl_metrics_records(log_path)
    assert len(records) == 6

    series = extract_metric_series(records, x_axis="step")
    assert series["valid/acc"].xs == [200.0, 400.0, 450.0, 900.0]
    assert series["train/loss"].ys == [1.0, 0.8]
    assert "global_step" not in series and "epoch" not in series

    with pytest.raises(ValueError):
        extract_metric_series(records, x_axis="wallclock")


def test_split_runs_falls_back_to_file_stem(tmp_path: Path) -> None:
    a = tmp_path / "a.jsonl"
    _write_log(a, run="conv")
    b = tmp_path / "b.jsonl"
    _write_log(b)

    assert list(split_runs(read_jsonl_metrics_records(a), fallback="a")) == ["conv"]
    assert list(split_runs(read_jsonl_metrics_records(b), fallback="b")) == ["b"]


def test_plot_metrics_writes_png(tmp_path: Path) -> None:
    log_path = tmp_path / "run.jsonl"
    other = tmp_path / "other.jsonl"
    out_path = tmp_path / "plots" / "metrics.png"
    _write_log(log_path)
    _write_log(other, run="mlp")

    saved = plot_metrics_from_logs(
        log_paths=[log_path, other],
        out_path=out_path,
        show=False,
        x_axis="step",
        metrics=None,
        title="unit test",
    )

    assert saved is not None
    assert saved.exists()
    assert saved.stat().st_size > 0


def test_plot_metrics_without_matching_series(tmp_path: Path) -> None:
    log_path = tmp_path / "run.jsonl"
    _write_log(log_path)
    with pytest.raises(ValueError):
        plot_metrics_from_logs(log_paths=[log_path], out_path=tmp_path / "x.png", show=False, metrics=["test/acc"])
