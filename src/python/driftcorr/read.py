from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Optional

import pandas as pd

logger = logging.getLogger(__name__)

TRACK_COLUMNS = ["id", "date", "lat", "lon"]
_TRUE_FLAGS = {"true", "t", "yes", "y", "1"}

def read_table(path: str) -> pd.DataFrame:
    suffix = Path(path).suffix.lower()
    if suffix == ".csv":
        return pd.read_csv(path)
    if suffix in (".pkl", ".pickle"):
        return pd.read_pickle(path)
    raise ValueError(f"Unsupported table format '{suffix}' for {path}. Use .csv or .pkl")

def to_utc(ts: pd.Series) -> pd.Series:
    return pd.to_datetime(ts, utc=True, errors="coerce")

def drop_geometry(df: pd.DataFrame) -> pd.DataFrame:
    """
    Returns a plain table without spatial-geometry columns.

    A column counts as geometry when it is named `geometry` or when its first
    non-null value looks like a shapely geometry (has `geom_type`).
    """
    geometry_cols: List[str] = []
    for col in df.columns:
        if col == "geometry":
            geometry_cols.append(col)
            continue
        if df[col].dtype != object:
            continue
        non_null = df[col].dropna()
        if not non_null.empty and hasattr(non_null.iloc[0], "geom_type"):
            geometry_cols.append(col)

    if geometry_cols:
        logger.info("Dropping geometry columns: %s", ", ".join(geometry_cols))
    # plain DataFrame, also when a GeoDataFrame comes in
    return pd.DataFrame(df.drop(columns=geometry_cols))

def as_flag(values: pd.Series) -> pd.Series:
    """
    Boolean view of a flag column. Missing values are False; strings count as
    True only when they read true/t/yes/y/1 (any case).
    """
    if pd.api.types.is_bool_dtype(values):
        return values.fillna(False).astype(bool)
    if pd.api.types.is_numeric_dtype(values):
        return values.fillna(0).astype(float) != 0
    return values.map(lambda v: pd.notna(v) and str(v).strip().lower() in _TRUE_FLAGS).astype(bool)

def _require_columns(df: pd.DataFrame, columns: Iterable[str], source: str) -> None:
    for col in columns:
        if col not in df.columns:
            raise KeyError(f"{source} must contain a '{col}' column.")

def ids_missing_covariate(aux: pd.DataFrame, covariate: str) -> List:
    _require_columns(aux, ["id", covariate], "Covariate table")
    per_id = (
        aux.assign(**{covariate: pd.to_numeric(aux[covariate], errors="coerce")})
        .groupby("id")[covariate]
        .mean()
    )
    return per_id[per_id.isna()].index.tolist()

def read_animal_tracks(
    data_path: str,
    *,
    exclude_ids: Optional[Iterable] = None,
    trip: Optional[int] = 1,
    exclude_suspect: bool = True,
) -> pd.DataFrame:
    df = drop_geometry(read_table(data_path))
    _require_columns(df, TRACK_COLUMNS, "Animal track table")

    df["date"] = to_utc(df["date"])

    if exclude_ids:
        before = df["id"].nunique()
        df = df[~df["id"].isin(list(exclude_ids))]
        logger.info("Excluded %d individuals lacking the covariate", before - df["id"].nunique())

    # first-trip filter, only when the columns are present
    if trip is not None and "trip" in df.columns:
        df = df[df["trip"] == trip]
    if exclude_suspect and "SUS" in df.columns:
        df = df[~as_flag(df["SUS"])]

    df = df.dropna(subset=["id", "date"])
    return df[TRACK_COLUMNS].sort_values(["id", "date"]).reset_index(drop=True)

def read_particle_tracks(data_path: str) -> pd.DataFrame:
    df = drop_geometry(read_table(data_path))
    _require_columns(df, TRACK_COLUMNS, "Particle track table")

    df["date"] = to_utc(df["date"])
    df = df.dropna(subset=["id", "date"])

    aux_numeric = [
        c for c in df.columns
        if c not in TRACK_COLUMNS and pd.api.types.is_numeric_dtype(df[c])
    ]
    return df[TRACK_COLUMNS + aux_numeric].sort_values(["id", "date"]).reset_index(drop=True)
