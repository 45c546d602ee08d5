import numpy as np
import pandas as pd
import pytest

from driftcorr.bearings import calculate_bearings, ellipsoid_bearing, initial_bearing

@pytest.mark.parametrize("n_fixes", [0, 1, 2, 5, 12])
def test_one_bearing_per_leg(make_track_fn, rng, n_fixes):
    track = make_track_fn("a", rng.uniform(0, 360, max(n_fixes - 1, 0)))
    track = track.iloc[:n_fixes]

    out = calculate_bearings(track)

    computed = out["bearing"].dropna()
    assert len(computed) == max(n_fixes - 1, 0)
    assert ((computed >= 0) & (computed < 360)).all()
    if n_fixes:
        assert np.isnan(out["bearing"].iloc[-1])

def test_cardinal_directions():
    lon1 = np.zeros(4)
    lat1 = np.zeros(4)
    lon2 = np.array([0.0, 1.0, 0.0, -1.0])
    lat2 = np.array([1.0, 0.0, -1.0, 0.0])

    np.testing.assert_allclose(initial_bearing(lon1, lat1, lon2, lat2), [0.0, 90.0, 180.0, 270.0], atol=1e-9)

def test_crossing_the_antimeridian_heads_east():
    assert float(initial_bearing(179.5, -50.0, -179.5, -50.0)) == pytest.approx(90.38, abs=0.05)

def test_recovers_leg_directions(make_track_fn):
    legs = [10.0, 95.0, 180.0, 265.0, 359.0]
    out = calculate_bearings(make_track_fn("a", legs))
    np.testing.assert_allclose(out["bearing"].iloc[:-1], legs, atol=1e-7)

def test_depends_only_on_endpoints():
    base = initial_bearing(10.0, -40.0, 11.0, -41.0)
    shifted = initial_bearing(10.0 + 73.0, -40.0, 11.0 + 73.0, -41.0)
    assert float(base) == pytest.approx(float(shifted), abs=1e-9)

def test_last_fix_of_each_individual_is_missing(make_track_fn):
    track = pd.concat([make_track_fn("a", [0, 45, 90]), make_track_fn("b", [180, 200])])
    out = calculate_bearings(track)

    for _, g in out.groupby("id"):
        assert np.isnan(g["bearing"].iloc[-1])
        assert g["bearing"].iloc[:-1].notna().all()

def test_wgs84_close_to_sphere():
    sphere = initial_bearing(150.0, -55.0, 151.0, -56.0)
    ellipsoid = ellipsoid_bearing(150.0, -55.0, 151.0, -56.0)
    assert float(ellipsoid) == pytest.approx(float(sphere), abs=0.5)

def test_wgs84_method_keeps_missing_last_fix(make_track_fn):
    out = calculate_bearings(make_track_fn("a", [30.0, 60.0]), method="wgs84")
    assert out["bearing"].notna().sum() == 2
    assert np.isnan(out["bearing"].iloc[-1])

def test_unknown_method_rejected(make_track_fn):
    with pytest.raises(ValueError):
        calculate_bearings(make_track_fn("a", [0.0]), method="rhumb")
