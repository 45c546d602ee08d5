from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Tuple

import matplotlib
matplotlib.use("Agg")

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import plotly.graph_objects as go
import seaborn as sns
from scipy import stats

from .trend import TrendModelFit

logger = logging.getLogger(__name__)

PLOT_NAMES = (
    "bearings_over_time",
    "lat_lon_arrows",
    "cumulative_correlations",
    "correlation_histogram",
    "max_correlation_histogram",
    "max_cor_vs_time",
)

@dataclass(frozen=True)
class PlotConfig:
    dpi: int = 150
    width: float = 10.0
    height: float = 8.0

    animal_color: str = "#d62728"
    particle_color: str = "#1f77b4"
    histogram_color: str = "#1f77b4"
    point_size: float = 4.0

    histogram_binwidth: float = 0.05
    max_facet_columns: int = 4

    # Trend diagnostics
    trend_width: float = 6.0
    trend_height: float = 3.5
    trend_dpi: int = 300

    map_height: int = 720

def _save_fig(fig: plt.Figure, path: Path, dpi: int) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fig.tight_layout()
    fig.savefig(path, dpi=dpi, bbox_inches="tight", facecolor="white")
    plt.close(fig)

def _facet_axes(ids: List, config: PlotConfig) -> Tuple[plt.Figure, Dict]:
    n = max(len(ids), 1)
    ncols = min(config.max_facet_columns, n)
    nrows = math.ceil(n / ncols)
    fig, axes = plt.subplots(nrows, ncols, figsize=(config.width, config.height), squeeze=False)
    flat = axes.ravel()
    for ax in flat[len(ids):]:
        ax.set_visible(False)
    return fig, dict(zip(ids, flat))

def plot_bearings_over_time(
    animal_bearings: pd.DataFrame,
    particle_bearings: pd.DataFrame,
    config: PlotConfig = PlotConfig(),
) -> plt.Figure:
    ids = sorted(animal_bearings["id"].unique())
    fig, axes = _facet_axes(ids, config)
    for pid, ax in axes.items():
        a = animal_bearings[animal_bearings["id"] == pid]
        p = particle_bearings[particle_bearings["id"] == pid]
        ax.scatter(a["days_since_start"], a["bearing"], s=config.point_size, color=config.animal_color)
        ax.scatter(p["days_since_start"], p["bearing"], s=config.point_size, color=config.particle_color)
        ax.set_title(str(pid), fontsize=8)
    fig.suptitle("Bearings over Time for Animals and Particles")
    fig.supxlabel("Days Since Start")
    fig.supylabel("Bearing (degrees)")
    fig.text(0.99, 0.005, "Red = Animals, Blue = Particles", ha="right", fontsize=8)
    return fig

def plot_lat_lon_arrows(animal_bearings: pd.DataFrame, config: PlotConfig = PlotConfig()) -> plt.Figure:
    ids = sorted(animal_bearings["id"].unique())
    fig, axes = _facet_axes(ids, config)
    for pid, ax in axes.items():
        track = animal_bearings[animal_bearings["id"] == pid].sort_values("date")
        lon = track["lon"].to_numpy(dtype=float)
        lat = track["lat"].to_numpy(dtype=float)
        ax.scatter(lon, lat, s=config.point_size, color="black")
        if len(track) > 1:
            ax.quiver(
                lon[:-1], lat[:-1], np.diff(lon), np.diff(lat),
                angles="xy", scale_units="xy", scale=1, color=config.animal_color, width=0.004,
            )
        ax.set_title(str(pid), fontsize=8)
    fig.suptitle("Lat and Lon for Animals with Path Arrows")
    fig.supxlabel("Longitude")
    fig.supylabel("Latitude")
    return fig

def plot_cumulative_correlations(points: pd.DataFrame, config: PlotConfig = PlotConfig()) -> plt.Figure:
    ids = sorted(points["id"].unique())
    fig, axes = _facet_axes(ids, config)
    for pid, ax in axes.items():
        pts = points[points["id"] == pid].sort_values("days_since_start")
        ax.plot(pts["days_since_start"], pts["cor"], color="black", linewidth=1)
        ax.set_ylim(-1, 1)
        ax.set_title(str(pid), fontsize=8)
    fig.suptitle("Cumulative Correlation of Bearings between Animals and Particles")
    fig.supxlabel("Days Since Start")
    fig.supylabel("Cumulative Correlation")
    return fig

def _histogram(values: pd.Series, title: str, xlabel: str, config: PlotConfig) -> plt.Figure:
    fig, ax = plt.subplots(figsize=(config.width, config.height))
    values = values.dropna()
    if not values.empty:
        sns.histplot(x=values, binwidth=config.histogram_binwidth, color=config.histogram_color, alpha=0.7, ax=ax)
    ax.set_title(title)
    ax.set_xlabel(xlabel)
    ax.set_ylabel("Count")
    return fig

def plot_max_cor_vs_time(critical: pd.DataFrame, config: PlotConfig = PlotConfig()) -> plt.Figure:
    fig, ax = plt.subplots(figsize=(config.width, config.height))
    if len(critical) >= 2:
        sns.regplot(data=critical, x="days_to_max", y="max_correlation", ax=ax, color="black")
    elif len(critical) == 1:
        ax.scatter(critical["days_to_max"], critical["max_correlation"], color="black")
    ax.set_title("Maximum Correlation vs. Time to Max Correlation")
    ax.set_xlabel("Days to Max Correlation")
    ax.set_ylabel("Maximum Correlation")
    return fig

def generate_plots(
    *,
    animal_bearings: pd.DataFrame,
    particle_bearings: pd.DataFrame,
    points: pd.DataFrame,
    critical: pd.DataFrame,
    config: PlotConfig = PlotConfig(),
) -> Dict[str, plt.Figure]:
    sns.set_theme(style="whitegrid")
    return {
        "bearings_over_time": plot_bearings_over_time(animal_bearings, particle_bearings, config),
        "lat_lon_arrows": plot_lat_lon_arrows(animal_bearings, config),
        "cumulative_correlations": plot_cumulative_correlations(points, config),
        "correlation_histogram": _histogram(points["cor"], "Distribution of Correlations", "Correlation", config),
        "max_correlation_histogram": _histogram(
            critical["max_correlation"], "Distribution of Maximum Correlations", "Maximum Correlation", config
        ),
        "max_cor_vs_time": plot_max_cor_vs_time(critical, config),
    }

def save_plots(plots: Dict[str, plt.Figure], out_dir: str, config: PlotConfig = PlotConfig()) -> List[Path]:
    out = Path(out_dir)
    written = []
    for name, fig in plots.items():
        path = out / f"{name}.png"
        _save_fig(fig, path, config.dpi)
        written.append(path)
    logger.info("Saved %d plots to %s", len(written), out)
    return written

def plot_trend_model(trend: TrendModelFit, out_path: str, config: PlotConfig = PlotConfig()) -> Path:
    """Smooth term with its confidence band and partial residuals, plus a QQ plot of the random intercepts."""
    fig, (ax_s, ax_re) = plt.subplots(1, 2, figsize=(config.trend_width, config.trend_height))

    fitted = trend.fitted
    grid = np.linspace(fitted["days_since_start"].min(), fitted["days_since_start"].max(), 200)
    curve = trend.predict(grid)
    intercept = trend.coefficients[0]

    # partial residuals: observation minus its individual's random intercept, centred like the curve
    re = fitted["id"].astype(str).map(trend.random_effects)
    partial = fitted["cor"] - re - intercept

    ax_s.scatter(fitted["days_since_start"], partial, s=1.5, color="grey", alpha=0.5)
    ax_s.plot(grid, curve["fit"] - intercept, color="black", linewidth=1)
    ax_s.plot(grid, curve["lower"] - intercept, color="black", linestyle="--", linewidth=0.8)
    ax_s.plot(grid, curve["upper"] - intercept, color="black", linestyle="--", linewidth=0.8)
    ax_s.set_xlabel("days_since_start")
    ax_s.set_ylabel(f"s(days_since_start,{trend.edf:.2f})")

    if len(trend.random_effects) >= 2:
        stats.probplot(trend.random_effects.to_numpy(), dist="norm", plot=ax_re)
    ax_re.set_title("s(id)")
    ax_re.set_xlabel("Gaussian quantiles")
    ax_re.set_ylabel("effects")

    path = Path(out_path)
    _save_fig(fig, path, config.trend_dpi)
    return path

def plot_tracks_map(
    animal: pd.DataFrame,
    particle: pd.DataFrame,
    out_path: str | None = None,
    config: PlotConfig = PlotConfig(),
) -> go.Figure:
    fig = go.Figure()
    for pid in sorted(animal["id"].unique()):
        a = animal[animal["id"] == pid].sort_values("date")
        p = particle[particle["id"] == pid].sort_values("date")
        fig.add_trace(
            go.Scattermap(
                lat=a["lat"], lon=a["lon"], mode="lines+markers", name=f"{pid} animal",
                legendgroup=str(pid), line=dict(color=config.animal_color, width=2),
                marker=dict(size=5, color=config.animal_color),
                customdata=np.c_[a["days_since_start"].to_numpy()],
                hovertemplate=f"id={pid}<br>day=%{{customdata[0]:.0f}}<br>lat=%{{lat:.4f}}<br>lon=%{{lon:.4f}}<extra></extra>",
            )
        )
        fig.add_trace(
            go.Scattermap(
                lat=p["lat"], lon=p["lon"], mode="lines+markers", name=f"{pid} particle",
                legendgroup=str(pid), line=dict(color=config.particle_color, width=2),
                marker=dict(size=5, color=config.particle_color),
                customdata=np.c_[p["days_since_start"].to_numpy()],
                hovertemplate=f"id={pid}<br>day=%{{customdata[0]:.0f}}<br>lat=%{{lat:.4f}}<br>lon=%{{lon:.4f}}<extra></extra>",
            )
        )

    all_lat = np.concatenate([animal["lat"].to_numpy(float), particle["lat"].to_numpy(float)])
    all_lon = np.concatenate([animal["lon"].to_numpy(float), particle["lon"].to_numpy(float)])
    center = {"lat": float(np.nanmean(all_lat)), "lon": float(np.nanmean(all_lon))} if all_lat.size else {"lat": 0.0, "lon": 0.0}

    fig.update_layout(
        template="plotly_white",
        title="Animal and particle tracks",
        height=config.map_height,
        margin=dict(l=10, r=10, t=60, b=10),
        map=dict(center=center, zoom=3),
    )

    if out_path:
        out = Path(out_path)
        out.parent.mkdir(parents=True, exist_ok=True)
        if out.suffix.lower() != ".html":
            out = out.with_suffix(".html")
        fig.write_html(str(out), include_plotlyjs="cdn", full_html=True, config={"scrollZoom": True})

    return fig
