from __future__ import annotations

import logging
from pathlib import Path

import matplotlib.pyplot as plt
import pandas as pd
import seaborn as sns

LOGGER = logging.getLogger("prload.charts")

sns.set_style("whitegrid")
plt.rcParams["figure.dpi"] = 100
plt.rcParams["savefig.dpi"] = 150
plt.rcParams["font.size"] = 10
plt.rcParams["axes.labelsize"] = 11
plt.rcParams["axes.titlesize"] = 13
plt.rcParams["legend.fontsize"] = 9

SCENARIO_NAMES = {
    "get_stats": "Get stats",
    "get_user_reviews": "User reviews",
    "create_pull_request": "Create PR",
    "merge_pull_request": "Merge PR",
    "deactivate_team": "Deactivate team",
}

STATUS_COLORS = {
    "ok": "#2E86AB",
    "failed": "#C73E1D",
}


def render_run_charts(df: pd.DataFrame, output_dir: Path, latency_target_ms: float) -> list[Path]:
    """Render the latency charts for a finished run; returns the files written."""
    if df.empty or "duration_ms" not in df.columns:
        LOGGER.warning("No request samples available for charts")
        return []

    df = df[df["duration_ms"].notna() & (df["duration_ms"] >= 0)].copy()
    if df.empty:
        LOGGER.warning("No valid latency data after filtering")
        return []

    output_dir.mkdir(parents=True, exist_ok=True)
    return [
        _render_scenario_boxplot(df, output_dir / "latency_by_scenario.png", latency_target_ms),
        _render_latency_timeline(df, output_dir / "latency_timeline.png", latency_target_ms),
    ]


def _render_scenario_boxplot(df: pd.DataFrame, chart_path: Path, latency_target_ms: float) -> Path:
    df["scenario_display"] = df["scenario"].map(lambda x: SCENARIO_NAMES.get(x, x))
    df["result"] = df["failed"].map(lambda failed: "failed" if failed else "ok")
    order = [SCENARIO_NAMES.get(name, name) for name in sorted(df["scenario"].unique())]
    hue_order = [result for result in ("ok", "failed") if result in set(df["result"])]

    fig, ax = plt.subplots(figsize=(12, 6))
    sns.boxplot(
        data=df,
        x="scenario_display",
        y="duration_ms",
        hue="result",
        order=order,
        hue_order=hue_order,
        palette=[STATUS_COLORS[result] for result in hue_order],
        ax=ax,
        linewidth=1.5,
        width=0.7,
    )
    ax.axhline(latency_target_ms, color="#F18F01", linestyle="--", linewidth=1.5, label="SLI target")
    ax.set_xlabel("Scenario", fontweight="semibold", labelpad=10)
    ax.set_ylabel("Response time (ms)", fontweight="semibold", labelpad=10)
    ax.set_ylim(bottom=0)
    ax.set_title("Response Time by Scenario", fontweight="bold", pad=15)
    ax.legend(loc="upper right", frameon=True)

    plt.tight_layout()
    fig.savefig(chart_path, bbox_inches="tight", facecolor="white")
    plt.close(fig)
    LOGGER.info("Rendering chart %s", chart_path)
    return chart_path


def _render_latency_timeline(df: pd.DataFrame, chart_path: Path, latency_target_ms: float) -> Path:
    """p95 latency and request count per second of wall-clock time."""
    start = df["sent_ts"].min()
    df["second"] = (df["sent_ts"] - start).astype(int)
    per_second = df.groupby("second").agg(
        p95_ms=("duration_ms", lambda values: values.quantile(0.95)),
        requests=("duration_ms", "size"),
    )

    fig, ax = plt.subplots(figsize=(12, 5))
    ax.plot(
        per_second.index,
        per_second["p95_ms"],
        marker="o",
        linewidth=2,
        markersize=4,
        color="#2E86AB",
        label="p95 latency",
    )
    ax.axhline(latency_target_ms, color="#F18F01", linestyle="--", linewidth=1.5, label="SLI target")
    ax.set_xlabel("Elapsed (s)", fontweight="semibold")
    ax.set_ylabel("p95 response time (ms)", fontweight="semibold")
    ax.set_ylim(bottom=0)
    ax.grid(True, alpha=0.3, linestyle="--")

    counts_ax = ax.twinx()
    counts_ax.bar(per_second.index, per_second["requests"], alpha=0.2, color="#6A994E", label="requests")
    counts_ax.set_ylabel("Requests / s", fontweight="semibold")
    counts_ax.grid(False)

    handles, labels = ax.get_legend_handles_labels()
    bar_handles, bar_labels = counts_ax.get_legend_handles_labels()
    ax.legend(handles + bar_handles, labels + bar_labels, loc="upper left", frameon=True)
    ax.set_title("Latency Timeline", fontweight="bold", pad=15)

    plt.tight_layout()
    fig.savefig(chart_path, bbox_inches="tight", facecolor="white")
    plt.close(fig)
    LOGGER.info("Rendering chart %s", chart_path)
    return chart_path


__all__ = ["render_run_charts"]
