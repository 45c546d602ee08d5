import numpy as np
import pandas as pd
import pytest

from driftcorr.align import add_days_since_start, align_tracks, check_alignment, match_date_range, resample_tracks
from driftcorr.errors import AlignmentError

def _fixes(rows):
    df = pd.DataFrame(rows, columns=["id", "date", "lon", "lat"])
    df["date"] = pd.to_datetime(df["date"], utc=True)
    return df

def test_resample_means_ignore_missing():
    df = _fixes(
        [
            ("a", "2021-01-01 03:00", 10.0, 1.0),
            ("a", "2021-01-01 15:00", np.nan, 3.0),
            ("a", "2021-01-02 06:00", np.nan, np.nan),
        ]
    )
    out = resample_tracks(df)

    assert list(out["date"]) == list(pd.to_datetime(["2021-01-01", "2021-01-02"], utc=True))
    assert out.loc[0, "lon"] == pytest.approx(10.0)
    assert out.loc[0, "lat"] == pytest.approx(2.0)
    assert np.isnan(out.loc[1, "lon"])
    assert np.isnan(out.loc[1, "lat"])

def test_resample_half_day_interval():
    df = _fixes(
        [
            ("a", "2021-01-01 01:00", 0.0, 0.0),
            ("a", "2021-01-01 13:00", 1.0, 1.0),
        ]
    )
    out = resample_tracks(df, interval="12h")
    assert len(out) == 2
    assert out["date"].iloc[1] == pd.Timestamp("2021-01-01 12:00", tz="UTC")

def test_match_is_inner_join():
    animal = _fixes([("a", "2021-01-01", 0, 0), ("a", "2021-01-02", 0, 0), ("a", "2021-01-03", 0, 0)])
    particle = _fixes([("a", "2021-01-02", 0, 0), ("a", "2021-01-03", 0, 0), ("a", "2021-01-04", 0, 0)])

    matched = match_date_range(animal, particle)
    assert list(matched["date"].dt.day) == [2, 3]

def test_days_since_start_is_per_individual():
    df = _fixes(
        [
            ("a", "2021-01-01", 0, 0),
            ("a", "2021-01-03", 0, 0),
            ("b", "2021-02-10", 0, 0),
            ("b", "2021-02-11", 0, 0),
        ]
    )
    out = add_days_since_start(df)
    assert out["days_since_start"].tolist() == [0.0, 2.0, 0.0, 1.0]

def test_aligned_tracks_have_equal_length(make_track_fn):
    animal = pd.concat(
        [
            make_track_fn("a", [0, 10, 20, 30, 40], freq="12h"),
            make_track_fn("b", [90] * 8, start_date="2021-03-01", freq="12h"),
        ]
    )
    particle = pd.concat(
        [
            make_track_fn("a", [5] * 6, start_date="2020-12-31"),
            make_track_fn("b", [100] * 2, start_date="2021-03-02"),
        ]
    ).assign(depth=1.0)

    a, p = align_tracks(animal, particle)

    assert a.groupby("id").size().to_dict() == p.groupby("id").size().to_dict()
    assert a.groupby("id").size().to_dict() == {"a": 3, "b": 3}
    np.testing.assert_array_equal(a["days_since_start"], p["days_since_start"])
    assert "depth" in p.columns

def test_mismatched_counts_fail():
    animal = add_days_since_start(_fixes([("a", "2021-01-01", 0, 0), ("a", "2021-01-02", 0, 0)]))
    particle = add_days_since_start(_fixes([("a", "2021-01-01", 0, 0)]))

    with pytest.raises(AlignmentError, match="animal=2, particle=1"):
        check_alignment(animal, particle)

def test_individual_missing_from_one_source_fails():
    animal = add_days_since_start(_fixes([("a", "2021-01-01", 0, 0), ("b", "2021-01-01", 0, 0)]))
    particle = add_days_since_start(_fixes([("a", "2021-01-01", 0, 0)]))

    with pytest.raises(AlignmentError):
        check_alignment(animal, particle)

def test_mismatched_elapsed_times_fail():
    animal = add_days_since_start(_fixes([("a", "2021-01-01", 0, 0), ("a", "2021-01-02", 0, 0)]))
    particle = add_days_since_start(_fixes([("a", "2021-01-01", 0, 0), ("a", "2021-01-05", 0, 0)]))

    with pytest.raises(AlignmentError, match="Elapsed-time"):
        check_alignment(animal, particle)
