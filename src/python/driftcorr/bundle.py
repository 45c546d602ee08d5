from __future__ import annotations

import logging
import pickle
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict

import pandas as pd

from .summary import SignificanceTest
from .trend import TrendModelFit

logger = logging.getLogger(__name__)

BUNDLE_FILENAME = "all_results.pkl"

@dataclass(frozen=True)
class AnalysisResults:
    animal_matched: pd.DataFrame
    particle_matched: pd.DataFrame
    animal_bearings: pd.DataFrame
    particle_bearings: pd.DataFrame
    cumulative_correlations: pd.DataFrame
    critical_period: pd.DataFrame
    trend_model: TrendModelFit
    t_test_result: SignificanceTest
    correlation_test: SignificanceTest
    input_paths: Dict[str, str] = field(default_factory=dict)
    parameters: Dict[str, Any] = field(default_factory=dict)

    def tables(self) -> Dict[str, pd.DataFrame]:
        return {
            "animal_matched": self.animal_matched,
            "particle_matched": self.particle_matched,
            "animal_bearings": self.animal_bearings,
            "particle_bearings": self.particle_bearings,
            "cumulative_correlations": self.cumulative_correlations,
            "critical_period": self.critical_period,
        }

def save_bundle(results: AnalysisResults, out_dir: str, write_csv: bool = True) -> Path:
    out = Path(out_dir)
    out.mkdir(parents=True, exist_ok=True)

    path = out / BUNDLE_FILENAME
    with open(path, "wb") as f:
        pickle.dump(results, f, protocol=pickle.HIGHEST_PROTOCOL)

    if write_csv:
        for name, table in results.tables().items():
            table.to_csv(out / f"{name}.csv", index=False)

    logger.info("Saved result bundle to %s", path)
    return path

def load_bundle(path: str) -> AnalysisResults:
    with open(path, "rb") as f:
        results = pickle.load(f)
    if not isinstance(results, AnalysisResults):
        raise TypeError(f"{path} does not hold an AnalysisResults bundle. Got: {type(results).__name__}")
    return results
