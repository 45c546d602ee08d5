from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd
from scipy import stats

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class SignificanceTest:
    name: str
    statistic: float
    p_value: float
    df: float
    estimate: float
    n: int

    def describe(self) -> str:
        return (
            f"{self.name}: estimate={self.estimate:.4f}, statistic={self.statistic:.4f}, "
            f"df={self.df:g}, p-value={self.p_value:.4g} (n={self.n})"
        )

def mean_max_correlation_ttest(critical: pd.DataFrame) -> SignificanceTest:
    """One-sample t-test of the mean maximum correlation against 0."""
    values = critical["max_correlation"].dropna().to_numpy(dtype=float)
    n = len(values)
    if n < 2:
        logger.warning("t-test needs at least 2 individuals, got %d", n)
        return SignificanceTest("One sample t-test", np.nan, np.nan, np.nan, float(np.mean(values)) if n else np.nan, n)

    res = stats.ttest_1samp(values, popmean=0.0)
    return SignificanceTest(
        name="One sample t-test",
        statistic=float(res.statistic),
        p_value=float(res.pvalue),
        df=float(n - 1),
        estimate=float(values.mean()),
        n=n,
    )

def time_vs_correlation_test(critical: pd.DataFrame) -> SignificanceTest:
    """Pearson correlation between days to max and max correlation."""
    pair = critical[["days_to_max", "max_correlation"]].dropna().astype(float)
    n = len(pair)
    if n < 3 or pair["days_to_max"].nunique() < 2 or pair["max_correlation"].nunique() < 2:
        logger.warning("Correlation test needs at least 3 non-constant pairs, got %d", n)
        return SignificanceTest("Pearson's product-moment correlation", np.nan, np.nan, np.nan, np.nan, n)

    r, p_value = stats.pearsonr(pair["days_to_max"], pair["max_correlation"])
    r = float(r)
    df = n - 2
    t_stat = r * np.sqrt(df / (1.0 - r * r)) if abs(r) < 1.0 else np.sign(r) * np.inf
    return SignificanceTest(
        name="Pearson's product-moment correlation",
        statistic=float(t_stat),
        p_value=float(p_value),
        df=float(df),
        estimate=r,
        n=n,
    )

def describe_critical_period(critical: pd.DataFrame) -> pd.DataFrame:
    numeric = critical.select_dtypes(include="number")
    if numeric.shape[1] == 0 or numeric.empty:
        return pd.DataFrame()
    desc = numeric.describe().T
    desc["skew"] = numeric.skew()
    desc["kurtosis"] = numeric.kurt()
    desc["se"] = desc["std"] / np.sqrt(desc["count"])
    return desc
