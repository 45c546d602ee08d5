from __future__ import annotations

import logging
from typing import Tuple

import numpy as np
import pandas as pd

from .errors import AlignmentError

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = "1D"

def resample_tracks(df: pd.DataFrame, interval: str = DEFAULT_INTERVAL) -> pd.DataFrame:
    """
    Buckets fixes into fixed-width intervals keyed by the interval start and
    averages every numeric column per (id, bucket). Missing values are ignored;
    a bucket with only missing values stays missing.
    """
    step = pd.Timedelta(interval)
    if step <= pd.Timedelta(0):
        raise ValueError(f"Resample interval must be positive. Got: {interval}")

    bucketed = df.assign(date=df["date"].dt.floor(step))
    return (
        bucketed
        .groupby(["id", "date"], as_index=False, sort=True)
        .mean(numeric_only=True)
    )

def match_date_range(df1: pd.DataFrame, df2: pd.DataFrame) -> pd.DataFrame:
    keys = df2[["id", "date"]].drop_duplicates()
    return df1.merge(keys, on=["id", "date"], how="inner")

def add_days_since_start(df: pd.DataFrame) -> pd.DataFrame:
    start = df.groupby("id")["date"].transform("min")
    return df.assign(days_since_start=(df["date"] - start) / pd.Timedelta(days=1))

def check_alignment(animal: pd.DataFrame, particle: pd.DataFrame) -> None:
    """Raises AlignmentError unless every id has the same elapsed-time grid in both tables."""
    animal_counts = animal.groupby("id").size()
    particle_counts = particle.groupby("id").size()
    all_ids = animal_counts.index.union(particle_counts.index)

    animal_counts = animal_counts.reindex(all_ids, fill_value=0)
    particle_counts = particle_counts.reindex(all_ids, fill_value=0)
    mismatched = all_ids[(animal_counts != particle_counts).to_numpy()]
    if len(mismatched) > 0:
        detail = ", ".join(
            f"{pid} (animal={animal_counts[pid]}, particle={particle_counts[pid]})" for pid in mismatched
        )
        raise AlignmentError(f"Per-individual sample counts differ after matching: {detail}")

    a = animal.sort_values(["id", "days_since_start"])
    p = particle.sort_values(["id", "days_since_start"])
    same_ids = a["id"].to_numpy() == p["id"].to_numpy()
    same_days = np.isclose(
        a["days_since_start"].to_numpy(dtype=float),
        p["days_since_start"].to_numpy(dtype=float),
    )
    if not (same_ids.all() and same_days.all()):
        bad_ids = sorted(set(a["id"].to_numpy()[~(same_ids & same_days)]))
        raise AlignmentError(f"Elapsed-time grids differ after matching for: {bad_ids}")

def align_tracks(
    animal_raw: pd.DataFrame,
    particle_raw: pd.DataFrame,
    interval: str = DEFAULT_INTERVAL,
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    logger.info("Resampling particle data to %s buckets", interval)
    particle_resampled = resample_tracks(particle_raw, interval=interval)
    logger.info("Resampling animal data to %s buckets", interval)
    animal_resampled = resample_tracks(animal_raw[["id", "date", "lat", "lon"]], interval=interval)

    particle_matched = add_days_since_start(match_date_range(particle_resampled, animal_resampled))
    animal_matched = add_days_since_start(match_date_range(animal_resampled, particle_resampled))

    check_alignment(animal_matched, particle_matched)

    animal_matched = animal_matched.sort_values(["id", "date"]).reset_index(drop=True)
    particle_matched = particle_matched.sort_values(["id", "date"]).reset_index(drop=True)

    logger.info(
        "Aligned %d individuals, %d samples per source",
        animal_matched["id"].nunique(),
        len(animal_matched),
    )
    return animal_matched, particle_matched
