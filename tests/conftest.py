import numpy as np
import pandas as pd
import pytest

EARTH_RADIUS_KM = 6371.0088

def destination(lon, lat, bearing_deg, dist_km):
    lat1 = np.radians(lat)
    lon1 = np.radians(lon)
    brng = np.radians(bearing_deg)
    d = dist_km / EARTH_RADIUS_KM
    lat2 = np.arcsin(np.sin(lat1) * np.cos(d) + np.cos(lat1) * np.sin(d) * np.cos(brng))
    lon2 = lon1 + np.arctan2(np.sin(brng) * np.sin(d) * np.cos(lat1), np.cos(d) - np.sin(lat1) * np.sin(lat2))
    return float((np.degrees(lon2) + 540.0) % 360.0 - 180.0), float(np.degrees(lat2))

def make_track(pid, bearings, start=(150.0, -55.0), start_date="2021-01-01", freq="1D", dist_km=30.0):
    """Track whose consecutive legs follow `bearings`; len(bearings) + 1 fixes."""
    lon, lat = start
    rows = [(lon, lat)]
    for b in bearings:
        lon, lat = destination(lon, lat, b, dist_km)
        rows.append((lon, lat))
    dates = pd.date_range(start_date, periods=len(rows), freq=freq, tz="UTC")
    return pd.DataFrame(
        {
            "id": pid,
            "date": dates,
            "lon": [r[0] for r in rows],
            "lat": [r[1] for r in rows],
        }
    )

@pytest.fixture
def rng():
    return np.random.default_rng(20240611)

@pytest.fixture
def make_track_fn():
    return make_track
