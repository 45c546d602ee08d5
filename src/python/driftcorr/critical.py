from __future__ import annotations

import logging

import pandas as pd

logger = logging.getLogger(__name__)

CRITICAL_COLUMNS = ["id", "max_correlation", "days_to_max", "p_value", "n_samples"]

def extract_critical_period(points: pd.DataFrame) -> pd.DataFrame:
    """
    Per individual, the cumulative correlation point with the highest
    correlation, ignoring the individual's first elapsed time and every point
    not flagged `valid`. Ties go to the earliest point. Individuals left with
    no candidate point are omitted.
    """
    if points.empty:
        return pd.DataFrame(columns=CRITICAL_COLUMNS)

    pts = points.sort_values(["id", "days_since_start"]).reset_index(drop=True)
    first_day = pts.groupby("id")["days_since_start"].transform("min")
    candidates = pts[(pts["days_since_start"] > first_day) & pts["valid"].astype(bool) & pts["cor"].notna()]

    dropped = set(pts["id"].unique()) - set(candidates["id"].unique())
    if dropped:
        logger.info("No valid correlation points for %d individuals: %s", len(dropped), sorted(dropped))

    if candidates.empty:
        return pd.DataFrame(columns=CRITICAL_COLUMNS)

    # idxmax keeps the first occurrence of the maximum
    best = candidates.loc[candidates.groupby("id", sort=True)["cor"].idxmax()]

    return (
        best.rename(columns={"cor": "max_correlation", "days_since_start": "days_to_max"})[CRITICAL_COLUMNS]
        .astype({"days_to_max": float, "max_correlation": float})
        .reset_index(drop=True)
    )
