#!/usr/bin/env python3
"""Plot loss and gradient-norm histories from PR-SGD run directories.

Usage:
    python -m prsgd.plot runs/20261017-*                  # Plot all matching runs
    python -m prsgd.plot runs/*/                          # Plot all runs
    python -m prsgd.plot runs/run1/ runs/run2/            # Plot specific runs
    python -m prsgd.plot --outdir comparison_plots runs/* # Custom output directory
"""

from __future__ import annotations
import argparse
import json
from pathlib import Path
from typing import Any

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd


def load_run(run_path: Path) -> dict[str, Any]:
    """Load a single run's config, meta, and events."""
    run_path = Path(run_path)

    with open(run_path / "config.json") as f:
        config = json.load(f)

    with open(run_path / "meta.json") as f:
        meta = json.load(f)

    events = []
    with open(run_path / "events.jsonl") as f:
        for line in f:
            events.append(json.loads(line))

    df = pd.DataFrame(events)

    # Get duration from meta.json (training_time_sec) if available,
    # otherwise fall back to calculating from event timestamps
    duration_sec = meta.get("training_time_sec")
    if duration_sec is None and not df.empty and "timestamp" in df.columns:
        timestamps = df["timestamp"].dropna()
        if len(timestamps) > 0:
            duration_sec = timestamps.max() - timestamps.min()

    return {
        "config": config,
        "meta": meta,
        "events": df,
        "path": run_path,
        "duration_sec": duration_sec,
    }


def run_label(run: dict) -> str:
    config = run["config"]
    steps = config.get("local_steps")
    if isinstance(steps, list) and len(set(steps)) == 1:
        steps = steps[0]
    label = f"PR-SGD (w={config['num_workers']}, K={steps}, lr={config['lr']})"

    if run.get("duration_sec") is not None:
        duration = run["duration_sec"]
        if duration < 60:
            label += f" ({duration:.1f}s)"
        else:
            minutes = int(duration // 60)
            seconds = duration % 60
            label += f" ({minutes}m {seconds:.1f}s)"
    return label


def plot_metric_vs_rounds(runs: list[dict], outdir: Path, column: str, ylabel: str, filename: str):
    """Plot one per-round metric (loss or grad_norm) for all runs, log scale."""
    fig, ax = plt.subplots(figsize=(10, 6))

    plotted = 0
    for run in runs:
        df = run["events"]
        if df.empty or "event_type" not in df.columns or column not in df.columns:
            continue

        round_events = df[df["event_type"] == "round"].sort_values("step")
        if round_events.empty:
            continue

        ax.plot(round_events["step"].values, round_events[column].values, marker="o", label=run_label(run), linewidth=2, markersize=4)
        plotted += 1

    ax.set_xlabel("Round", fontsize=12)
    ax.set_ylabel(ylabel, fontsize=12)
    ax.set_yscale("log")
    ax.set_title(f"{ylabel} vs Rounds", fontsize=14, fontweight="bold")
    if plotted:
        ax.legend(fontsize=10)
    ax.grid(True, alpha=0.3)

    outfile = outdir / filename
    plt.tight_layout()
    plt.savefig(outfile, dpi=150)
    print(f"Saved: {outfile}")
    plt.close()
    return outfile


def plot_loss_vs_rounds(runs: list[dict], outdir: Path):
    return plot_metric_vs_rounds(runs, outdir, "loss", "Loss", "loss_vs_rounds.png")


def plot_grad_norm_vs_rounds(runs: list[dict], outdir: Path):
    return plot_metric_vs_rounds(runs, outdir, "grad_norm", "Gradient Norm", "grad_norm_vs_rounds.png")


def plot_worker_latency(runs: list[dict], outdir: Path):
    """Plot the mean duration of each worker's local phase."""
    fig, axes = plt.subplots(1, len(runs), figsize=(6 * len(runs), 5), squeeze=False)
    axes = axes[0]

    for idx, run in enumerate(runs):
        df = run["events"]
        if df.empty or "event_type" not in df.columns:
            continue
        worker_df = df[df["event_type"] == "worker"]
        if worker_df.empty:
            print(f"No worker events found for {run['path']}")
            continue

        latencies = []
        labels = []
        for worker_id in sorted(worker_df["worker_id"].dropna().unique()):
            latencies.append(worker_df[worker_df["worker_id"] == worker_id]["latency_ms"].mean())
            labels.append(f"W{int(worker_id)}")

        ax = axes[idx]
        bars = ax.bar(labels, latencies, color=plt.cm.viridis(np.linspace(0.3, 0.9, len(latencies))))
        ax.set_xlabel("Worker", fontsize=11)
        ax.set_ylabel("Local phase (ms)", fontsize=11)
        ax.set_title(run_label(run), fontsize=12, fontweight="bold")
        ax.grid(True, axis="y", alpha=0.3)

        for bar, val in zip(bars, latencies):
            height = bar.get_height()
            ax.text(bar.get_x() + bar.get_width() / 2.0, height, f'{val:.1f}', ha='center', va='bottom', fontsize=9)

    outfile = outdir / "worker_latency.png"
    plt.tight_layout()
    plt.savefig(outfile, dpi=150)
    print(f"Saved: {outfile}")
    plt.close()
    return outfile


def main(argv=None):
    parser = argparse.ArgumentParser(description="Plot PR-SGD loss and gradient-norm histories")
    parser.add_argument("runs", nargs="+", type=str, help="Run directories to plot (supports globs)")
    parser.add_argument("--outdir", type=str, default="comparison_plots", help="Output directory for plots")
    args = parser.parse_args(argv)

    # Expand globs and collect run directories
    run_paths = []
    for pattern in args.runs:
        path = Path(pattern)
        if path.is_dir() and (path / "events.jsonl").exists():
            run_paths.append(path)
        else:
            # Path.glob only takes relative patterns
            root = Path(path.anchor) if path.is_absolute() else Path(".")
            for match in root.glob(str(path.relative_to(root) if path.is_absolute() else path)):
                if match.is_dir() and (match / "events.jsonl").exists():
                    run_paths.append(match)

    if not run_paths:
        print("No valid run directories found")
        print("   Each run directory must contain events.jsonl, config.json, and meta.json")
        return 1

    print(f"Found {len(run_paths)} run(s):")
    for p in run_paths:
        print(f"   - {p}")

    runs = []
    for path in run_paths:
        try:
            run = load_run(path)
            runs.append(run)
            print(f"Loaded: {run['meta']['run_id']}")
        except (OSError, ValueError, KeyError) as e:
            print(f"Failed to load {path}: {e}")

    if not runs:
        print("No runs loaded successfully")
        return 1

    outdir = Path(args.outdir)
    outdir.mkdir(parents=True, exist_ok=True)
    print(f"\nGenerating plots in: {outdir}")

    plot_loss_vs_rounds(runs, outdir)
    plot_grad_norm_vs_rounds(runs, outdir)
    plot_worker_latency(runs, outdir)

    print(f"\nAll plots generated successfully!")
    return 0


if __name__ == "__main__":
    main()
