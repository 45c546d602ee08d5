from __future__ import annotations

import copy
import datetime as dt
import logging
import traceback
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, Optional

import pandas as pd
import yaml

from .align import DEFAULT_INTERVAL, align_tracks
from .bearings import calculate_bearings
from .bundle import AnalysisResults, save_bundle
from .correlation import DEFAULT_MIN_WINDOW_SIZE, cumulative_circular_correlation, pair_bearings
from .critical import extract_critical_period
from .plot import PlotConfig, generate_plots, plot_tracks_map, plot_trend_model, save_plots
from .read import ids_missing_covariate, read_animal_tracks, read_particle_tracks, read_table
from .summary import describe_critical_period, mean_max_correlation_ttest, time_vs_correlation_test
from .trend import DEFAULT_BASIS_DIMENSION, fit_trend_model

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"
TRANSCRIPT_FILENAME = "console_output.txt"

DEFAULT_CONFIG: Dict[str, Dict[str, Any]] = {
    "stage_read": {
        "animal_data_path": None,
        "particle_data_path": None,
        "covariate_data_path": None,
        "covariate": "weanmass",
        "trip": 1,
        "exclude_suspect": True,
    },
    "stage_align": {
        "resample_interval": DEFAULT_INTERVAL,
    },
    "stage_bearings": {
        "method": "great_circle",
    },
    "stage_correlation": {
        "method": "incremental",
        "min_window_size": DEFAULT_MIN_WINDOW_SIZE,
    },
    "stage_trend": {
        "basis_dimension": DEFAULT_BASIS_DIMENSION,
    },
    "stage_output": {
        "output_dir": "outputs/cumulative_correlation_analysis",
        "dated_subdir": True,
        "write_csv": True,
        "plot_dpi": 150,
    },
}

def load_config(config_path: Optional[str] = None) -> Dict[str, Dict[str, Any]]:
    """Reads the YAML config and fills every missing key from DEFAULT_CONFIG."""
    config = copy.deepcopy(DEFAULT_CONFIG)
    if config_path is None:
        return config

    with open(config_path, "r") as f:
        loaded = yaml.safe_load(f) or {}
    if not isinstance(loaded, dict):
        raise TypeError(f"{config_path} must hold a mapping of config sections. Got: {type(loaded).__name__}")

    for stage, values in loaded.items():
        if stage not in config:
            raise KeyError(f"Unknown config section '{stage}' in {config_path}")
        if not isinstance(values, dict):
            raise TypeError(f"Config section '{stage}' must be a mapping. Got: {type(values).__name__}")
        config[stage].update(values)
    return config

def run_analysis(
    animal_matched: pd.DataFrame,
    particle_matched: pd.DataFrame,
    *,
    bearing_method: str = "great_circle",
    correlation_method: str = "incremental",
    min_window_size: int = DEFAULT_MIN_WINDOW_SIZE,
    basis_dimension: int = DEFAULT_BASIS_DIMENSION,
) -> AnalysisResults:
    logger.info("Calculating bearings for animal data")
    animal_bearings = calculate_bearings(animal_matched, method=bearing_method)
    logger.info("Calculating bearings for particle data")
    particle_bearings = calculate_bearings(particle_matched, method=bearing_method)

    logger.info("Starting cumulative circular correlation calculation")
    paired = pair_bearings(animal_bearings, particle_bearings)
    points = cumulative_circular_correlation(paired, method=correlation_method, min_window_size=min_window_size)
    logger.info("Finished cumulative circular correlation calculation (%d points)", len(points))

    logger.info("Finding critical period")
    critical = extract_critical_period(points)

    logger.info("Performing t-test")
    t_test_result = mean_max_correlation_ttest(critical)

    logger.info("Performing correlation test")
    correlation_test = time_vs_correlation_test(critical)

    logger.info("Fitting trend model")
    trend = fit_trend_model(points, basis_dimension=basis_dimension)
    logger.info("Trend model fitting complete")

    return AnalysisResults(
        animal_matched=animal_matched,
        particle_matched=particle_matched,
        animal_bearings=animal_bearings,
        particle_bearings=particle_bearings,
        cumulative_correlations=points,
        critical_period=critical,
        trend_model=trend,
        t_test_result=t_test_result,
        correlation_test=correlation_test,
        parameters={
            "bearing_method": bearing_method,
            "correlation_method": correlation_method,
            "min_window_size": min_window_size,
            "basis_dimension": basis_dimension,
        },
    )

def _resolve_output_dir(output_config: Dict[str, Any]) -> Path:
    out = Path(output_config["output_dir"])
    if output_config.get("dated_subdir"):
        out = out / dt.date.today().strftime("%Y-%m-%d")
    return out

def _attach_transcript(output_dir: Path) -> logging.Handler:
    output_dir.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(output_dir / TRANSCRIPT_FILENAME, mode="w", encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT))
    root = logging.getLogger()
    root.addHandler(handler)
    if root.level > logging.INFO or root.level == logging.NOTSET:
        root.setLevel(logging.INFO)
    return handler

def _log_failure(exc: BaseException) -> None:
    frames = traceback.extract_tb(exc.__traceback__)
    logger.error("Error occurred: %s", exc)
    if frames:
        last = frames[-1]
        logger.error("In: %s (%s:%d): %s", last.name, last.filename, last.lineno, last.line)
    logger.error("Traceback:\n%s", "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))

def _write_outputs(results: AnalysisResults, output_dir: Path, output_config: Dict[str, Any]) -> None:
    plot_config = PlotConfig(dpi=int(output_config["plot_dpi"]))

    logger.info("Summary of critical period:\n%s", describe_critical_period(results.critical_period).to_string())
    logger.info(
        "T-test results (if p < 0.05, then the mean maximum correlation is significantly different from 0): %s",
        results.t_test_result.describe(),
    )
    logger.info(
        "Correlation test results (if p < 0.05, then the correlation is significantly different from 0): %s",
        results.correlation_test.describe(),
    )
    logger.info("Trend model summary:\n%s", results.trend_model.summary())

    plot_trend_model(results.trend_model, str(output_dir / "gamm_model_plots.png"), plot_config)

    plots = generate_plots(
        animal_bearings=results.animal_bearings,
        particle_bearings=results.particle_bearings,
        points=results.cumulative_correlations,
        critical=results.critical_period,
        config=plot_config,
    )
    save_plots(plots, str(output_dir), plot_config)
    plot_tracks_map(results.animal_matched, results.particle_matched, str(output_dir / "tracks_map.html"), plot_config)

    save_bundle(results, str(output_dir), write_csv=bool(output_config["write_csv"]))

def run_pipeline(config: Dict[str, Dict[str, Any]]) -> int:
    """
    Runs one analysis end to end. Returns 0 on success and 1 when the run
    failed; failures are written to the console transcript.
    """
    read_config = config["stage_read"]
    output_config = config["stage_output"]
    output_dir = _resolve_output_dir(output_config)
    handler = _attach_transcript(output_dir)

    try:
        logger.info("Animal data path: %s", read_config["animal_data_path"])
        logger.info("Particle data path: %s", read_config["particle_data_path"])
        logger.info("Output path: %s", output_dir)

        exclude_ids = []
        if read_config.get("covariate_data_path"):
            logger.info("Loading covariate data")
            aux = read_table(read_config["covariate_data_path"])
            exclude_ids = ids_missing_covariate(aux, read_config["covariate"])

        logger.info("Loading animal data")
        animal = read_animal_tracks(
            read_config["animal_data_path"],
            exclude_ids=exclude_ids,
            trip=read_config.get("trip"),
            exclude_suspect=bool(read_config.get("exclude_suspect", True)),
        )
        logger.info("Loading particle data")
        particle = read_particle_tracks(read_config["particle_data_path"])

        animal_matched, particle_matched = align_tracks(
            animal, particle, interval=config["stage_align"]["resample_interval"]
        )

        results = run_analysis(
            animal_matched,
            particle_matched,
            bearing_method=config["stage_bearings"]["method"],
            correlation_method=config["stage_correlation"]["method"],
            min_window_size=int(config["stage_correlation"]["min_window_size"]),
            basis_dimension=int(config["stage_trend"]["basis_dimension"]),
        )
        results = replace(
            results,
            input_paths={
                "animal_data_path": str(read_config["animal_data_path"]),
                "particle_data_path": str(read_config["particle_data_path"]),
            },
            parameters={
                **results.parameters,
                "resample_interval": config["stage_align"]["resample_interval"],
            },
        )

        _write_outputs(results, output_dir, output_config)
        logger.info("Analysis complete. Results saved to %s", output_dir)
        return 0
    except Exception as exc:
        _log_failure(exc)
        return 1
    finally:
        logging.getLogger().removeHandler(handler)
        handler.close()
