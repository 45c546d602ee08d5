from __future__ import annotations

from typing import Union

import numpy as np
import pandas as pd
import pyproj

ArrayLike = Union[float, np.ndarray]

BEARING_METHODS = ("great_circle", "wgs84")

_WGS84 = pyproj.Geod(ellps="WGS84")

def _normalize_degrees(deg: np.ndarray) -> np.ndarray:
    deg = np.mod(deg, 360.0)
    # np.mod(-1e-17, 360) rounds to 360.0
    return np.where(deg >= 360.0, 0.0, deg)

def initial_bearing(lon1: ArrayLike, lat1: ArrayLike, lon2: ArrayLike, lat2: ArrayLike) -> np.ndarray:
    """
    Initial compass bearing of the great-circle path from (lon1, lat1) to
    (lon2, lat2), in degrees clockwise from north, within [0, 360).
    Inputs in degrees; NaN in, NaN out.
    """
    lat1 = np.radians(np.asarray(lat1, dtype=float))
    lon1 = np.radians(np.asarray(lon1, dtype=float))
    lat2 = np.radians(np.asarray(lat2, dtype=float))
    lon2 = np.radians(np.asarray(lon2, dtype=float))
    dlon = lon2 - lon1
    y = np.sin(dlon) * np.cos(lat2)
    x = np.cos(lat1) * np.sin(lat2) - np.sin(lat1) * np.cos(lat2) * np.cos(dlon)
    return _normalize_degrees(np.degrees(np.arctan2(y, x)))

def ellipsoid_bearing(lon1: ArrayLike, lat1: ArrayLike, lon2: ArrayLike, lat2: ArrayLike) -> np.ndarray:
    """Forward azimuth on the WGS84 ellipsoid, same conventions as `initial_bearing`."""
    lon1, lat1, lon2, lat2 = np.broadcast_arrays(
        np.asarray(lon1, dtype=float),
        np.asarray(lat1, dtype=float),
        np.asarray(lon2, dtype=float),
        np.asarray(lat2, dtype=float),
    )
    out = np.full(lon1.shape, np.nan)
    ok = np.isfinite(lon1) & np.isfinite(lat1) & np.isfinite(lon2) & np.isfinite(lat2)
    if ok.any():
        az12, _, _ = _WGS84.inv(lon1[ok], lat1[ok], lon2[ok], lat2[ok])
        out[ok] = _normalize_degrees(np.asarray(az12, dtype=float))
    return out

def calculate_bearings(track: pd.DataFrame, method: str = "great_circle") -> pd.DataFrame:
    """
    Adds a `bearing` column: direction from each fix to the next fix of the
    same individual. The last fix of every individual has no successor and
    gets NaN.
    """
    if method not in BEARING_METHODS:
        raise ValueError(f"method must be one of {BEARING_METHODS}. Got: {method}")

    out = track.sort_values(["id", "date"]).reset_index(drop=True)
    if out.empty:
        return out.assign(bearing=pd.Series(dtype=float))

    grouped = out.groupby("id", sort=False)
    next_lon = grouped["lon"].shift(-1).to_numpy(dtype=float)
    next_lat = grouped["lat"].shift(-1).to_numpy(dtype=float)
    lon = out["lon"].to_numpy(dtype=float)
    lat = out["lat"].to_numpy(dtype=float)

    if method == "great_circle":
        bearing = initial_bearing(lon, lat, next_lon, next_lat)
    else:
        bearing = ellipsoid_bearing(lon, lat, next_lon, next_lat)

    return out.assign(bearing=bearing)
