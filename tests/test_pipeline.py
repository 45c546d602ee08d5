import logging

import numpy as np
import pandas as pd
import pytest
import yaml

from driftcorr.__main__ import main
from driftcorr.bearings import calculate_bearings
from driftcorr.bundle import BUNDLE_FILENAME, load_bundle
from driftcorr.correlation import cumulative_circular_correlation, pair_bearings
from driftcorr.plot import PLOT_NAMES
from driftcorr.run_all import TRANSCRIPT_FILENAME, load_config, run_pipeline

N_LEGS = 59  # 60 fixes every 12 hours -> 30 daily buckets
N_DAYS = 30
MIN_WINDOW = 10
RANDOM_IDS = ["B", "C", "D", "F", "G"]

@pytest.fixture
def inputs(tmp_path, rng, make_track_fn):
    animal, particle = [], []
    starts = {
        "A": (150.0, -55.0),
        "B": (155.0, -57.0),
        "C": (160.0, -54.0),
        "D": (145.0, -58.0),
        "E": (150.0, -60.0),
        "F": (140.0, -52.0),
        "G": (165.0, -59.0),
    }

    for pid, start in starts.items():
        legs = rng.uniform(0, 360, N_LEGS)
        a = make_track_fn(pid, legs, start=start, freq="12h")
        if pid == "A":
            p = a.copy()
        else:
            p = make_track_fn(pid, rng.uniform(0, 360, N_LEGS), start=start, freq="12h")
        animal.append(a.assign(trip=1, SUS=False))
        particle.append(p.assign(depth=rng.uniform(0, 50, len(p))))

    paths = {
        "animal": tmp_path / "animal.csv",
        "particle": tmp_path / "particle.csv",
        "covariate": tmp_path / "covariates.csv",
    }
    pd.concat(animal).to_csv(paths["animal"], index=False)
    pd.concat(particle).to_csv(paths["particle"], index=False)
    pd.DataFrame(
        {
            "id": ["A", "B", "C", "D", "E", "F", "G"],
            "weanmass": [110.0, 95.0, 120.0, 101.0, np.nan, 99.0, 104.0],
        }
    ).to_csv(paths["covariate"], index=False)
    return paths

@pytest.fixture
def completed_run(tmp_path, inputs):
    config = {
        "stage_read": {
            "animal_data_path": str(inputs["animal"]),
            "particle_data_path": str(inputs["particle"]),
            "covariate_data_path": str(inputs["covariate"]),
        },
        "stage_correlation": {"min_window_size": MIN_WINDOW},
        "stage_output": {"output_dir": str(tmp_path / "out"), "dated_subdir": False, "plot_dpi": 60},
    }
    config_path = tmp_path / "project.yaml"
    config_path.write_text(yaml.safe_dump(config))

    status = main(["--config", str(config_path)])
    return status, tmp_path / "out"

def test_run_writes_every_artifact(completed_run):
    status, out = completed_run
    assert status == 0

    for name in PLOT_NAMES:
        assert (out / f"{name}.png").exists()
    assert (out / "gamm_model_plots.png").exists()
    assert (out / "tracks_map.html").exists()
    assert (out / BUNDLE_FILENAME).exists()
    assert (out / "cumulative_correlations.csv").exists()
    assert (out / "critical_period.csv").exists()

    transcript = (out / TRANSCRIPT_FILENAME).read_text()
    assert "Analysis complete" in transcript
    assert "Trend model summary" in transcript

def test_identical_and_random_individuals(completed_run):
    _, out = completed_run
    results = load_bundle(str(out / BUNDLE_FILENAME))

    assert set(results.animal_matched["id"]) == {"A", *RANDOM_IDS}
    assert results.animal_matched.groupby("id").size().eq(N_DAYS).all()

    critical = results.critical_period.set_index("id")
    assert critical.loc["A", "max_correlation"] == pytest.approx(1.0, abs=1e-9)
    assert critical.loc["B", "max_correlation"] < 0.99
    assert (critical.loc[RANDOM_IDS, "max_correlation"] < 0.99).all()

    points = results.cumulative_correlations
    first = points.groupby("id").head(1)
    assert first["cor"].isna().all()
    assert not points.loc[points["n_samples"] < MIN_WINDOW, "valid"].any()
    assert points.loc[points["n_samples"] >= MIN_WINDOW, "valid"].all()

    assert results.trend_model.n_individuals == 1 + len(RANDOM_IDS)
    assert results.t_test_result.n == 1 + len(RANDOM_IDS)

def test_early_windows_not_significant_without_association(completed_run):
    _, out = completed_run
    points = load_bundle(str(out / BUNDLE_FILENAME)).cumulative_correlations
    early = points[points["valid"]].groupby("id").head(1).set_index("id")
    # independent headings: most individuals stay above 0.05 at their first valid window
    assert (early.loc[RANDOM_IDS, "p_value"] > 0.05).sum() >= 3

def test_bundle_reproduces_correlations(completed_run):
    _, out = completed_run
    results = load_bundle(str(out / BUNDLE_FILENAME))
    params = results.parameters

    animal = calculate_bearings(results.animal_matched, method=params["bearing_method"])
    particle = calculate_bearings(results.particle_matched, method=params["bearing_method"])
    points = cumulative_circular_correlation(
        pair_bearings(animal, particle),
        method=params["correlation_method"],
        min_window_size=params["min_window_size"],
    )

    pd.testing.assert_frame_equal(points, results.cumulative_correlations)

def test_failure_is_logged_not_raised(tmp_path):
    config = load_config()
    config["stage_read"]["animal_data_path"] = str(tmp_path / "missing.csv")
    config["stage_read"]["particle_data_path"] = str(tmp_path / "missing.csv")
    config["stage_output"]["output_dir"] = str(tmp_path / "out")
    config["stage_output"]["dated_subdir"] = False

    assert run_pipeline(config) == 1

    transcript = (tmp_path / "out" / TRANSCRIPT_FILENAME).read_text()
    assert "Error occurred" in transcript
    assert "Traceback" in transcript
    assert not (tmp_path / "out" / BUNDLE_FILENAME).exists()

def test_unknown_config_section(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("stage_rw:\n  x: 1\n")
    with pytest.raises(KeyError):
        load_config(str(path))

def test_missing_config_exits_with_error(tmp_path, caplog):
    with caplog.at_level(logging.ERROR):
        status = main(["--config", str(tmp_path / "nowhere.yaml")])
    assert status == 1
    assert "Could not load config" in caplog.text

def test_malformed_config_exits_with_error(tmp_path, caplog):
    path = tmp_path / "bad.yaml"
    path.write_text("- stage_read\n- stage_output\n")
    with caplog.at_level(logging.ERROR):
        status = main(["--config", str(path)])
    assert status == 1
    assert "must hold a mapping" in caplog.text
