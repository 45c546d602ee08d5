"""
Population trend of cumulative correlation over elapsed time.

Model:  cor ~ f(days_since_start) + b_id + e

f is a penalized regression spline written in its mixed-model form: an
unpenalized intercept and linear term plus a radial cubic basis whose
coefficients share one variance component. Together with the per-individual
random intercept b_id this is a linear mixed model with two crossed variance
components, fitted by REML with statsmodels MixedLM (one group spanning all
rows). Coefficients, their Bayesian covariance and the effective degrees of
freedom follow from the mixed model equations at the REML variance estimates.
"""
from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field
from typing import Dict, Optional

import numpy as np
import pandas as pd
import statsmodels.formula.api as smf
from scipy.stats import f as f_dist
from scipy.stats import norm
from statsmodels.tools.sm_exceptions import ConvergenceWarning

from .errors import TrendFitError

logger = logging.getLogger(__name__)

DEFAULT_BASIS_DIMENSION = 10

# variance components below this fraction of the residual variance are treated as zero
_MIN_VARIANCE_RATIO = 1e-10

def _radial_basis(t_std: np.ndarray, knots: np.ndarray, inv_sqrt_omega: np.ndarray) -> np.ndarray:
    z_k = np.abs(t_std[:, None] - knots[None, :]) ** 3
    return z_k @ inv_sqrt_omega

def _inverse_sqrt_penalty(knots: np.ndarray) -> np.ndarray:
    omega = np.abs(knots[:, None] - knots[None, :]) ** 3
    u, d, vt = np.linalg.svd(omega)
    sqrt_omega = u @ np.diag(np.sqrt(d)) @ vt
    return np.linalg.inv(sqrt_omega).T

@dataclass(frozen=True)
class TrendModelFit:
    coefficients: np.ndarray
    covariance: np.ndarray
    knots: np.ndarray
    inv_sqrt_omega: np.ndarray
    t_mean: float
    t_scale: float
    edf: float
    edf_total: float
    f_statistic: float
    ref_df: float
    residual_df: float
    p_value: float
    r_squared_adj: float
    reml_llf: float
    variance_components: Dict[str, float]
    random_effects: pd.Series
    converged: bool
    n_obs: int
    n_individuals: int
    fitted: pd.DataFrame = field(repr=False)

    @property
    def n_smooth(self) -> int:
        return 2 + len(self.knots)

    def _smooth_design(self, days: np.ndarray) -> np.ndarray:
        t_std = (np.asarray(days, dtype=float) - self.t_mean) / self.t_scale
        return np.column_stack(
            [np.ones_like(t_std), t_std, _radial_basis(t_std, self.knots, self.inv_sqrt_omega)]
        )

    def predict(self, days, level: float = 0.95) -> pd.DataFrame:
        """Population curve (random intercepts at zero) with a pointwise confidence band."""
        days = np.atleast_1d(np.asarray(days, dtype=float))
        design = self._smooth_design(days)
        k = self.n_smooth
        beta = self.coefficients[:k]
        vb = self.covariance[:k, :k]

        fit = design @ beta
        se = np.sqrt(np.einsum("ij,jk,ik->i", design, vb, design))
        crit = norm.ppf(0.5 + level / 2.0)
        return pd.DataFrame(
            {
                "days_since_start": days,
                "fit": fit,
                "se": se,
                "lower": fit - crit * se,
                "upper": fit + crit * se,
            }
        )

    def summary(self) -> str:
        vc = self.variance_components
        lines = [
            "Population trend model (REML)",
            "  cor ~ s(days_since_start) + (1 | id)",
            f"  observations: {self.n_obs}  individuals: {self.n_individuals}  converged: {self.converged}",
            f"  intercept: {self.coefficients[0]:.4f} (se {np.sqrt(self.covariance[0, 0]):.4f})",
            f"  s(days_since_start): edf={self.edf:.3f}  Ref.df={self.ref_df:.0f}  "
            f"F={self.f_statistic:.3f}  p-value={self.p_value:.4g}",
            f"  R-sq.(adj) = {self.r_squared_adj:.4f}",
            f"  REML log-likelihood = {self.reml_llf:.3f}",
            "  variance components: "
            + ", ".join(f"{name}={value:.4g}" for name, value in vc.items()),
        ]
        return "\n".join(lines)

def _choose_knots(t_std: np.ndarray, basis_dimension: int) -> np.ndarray:
    unique_t = np.unique(t_std)
    n_knots = min(basis_dimension - 2, len(unique_t) - 2)
    if n_knots < 1:
        raise TrendFitError(
            f"Need at least 3 distinct elapsed times to fit a smooth. Got: {len(unique_t)}"
        )
    if n_knots < basis_dimension - 2:
        logger.warning(
            "Only %d distinct elapsed times; reducing basis dimension from %d to %d",
            len(unique_t), basis_dimension, n_knots + 2,
        )
    probs = np.linspace(0.0, 1.0, n_knots + 2)[1:-1]
    return np.quantile(unique_t, probs)

def _smooth_test(beta: np.ndarray, vb: np.ndarray, edf: float, residual_df: float) -> tuple[float, float, float]:
    # Wald test against f = 0 with a rank-truncated pseudo-inverse of the smooth covariance
    rank = int(min(len(beta), max(1, round(edf))))
    eigval, eigvec = np.linalg.eigh(vb)
    order = np.argsort(eigval)[::-1][:rank]
    proj = eigvec[:, order].T @ beta
    stat = float(np.sum(proj ** 2 / eigval[order]))
    f_stat = stat / rank
    p_value = float(f_dist.sf(f_stat, rank, max(residual_df, 1.0)))
    return f_stat, float(rank), p_value

def fit_trend_model(
    points: pd.DataFrame,
    basis_dimension: int = DEFAULT_BASIS_DIMENSION,
    maxiter: Optional[int] = None,
) -> TrendModelFit:
    """
    Fits the population trend to the pooled cumulative correlation points.
    Only rows flagged `valid` with a finite correlation are used.
    """
    data = points
    if "valid" in data.columns:
        data = data[data["valid"].astype(bool)]
    data = data[np.isfinite(data["cor"].astype(float))]
    data = data[["id", "days_since_start", "cor"]].sort_values(["id", "days_since_start"]).reset_index(drop=True)

    n_individuals = data["id"].nunique()
    if n_individuals < 2:
        raise TrendFitError(f"Need at least 2 individuals for the random intercept. Got: {n_individuals}")

    t = data["days_since_start"].to_numpy(dtype=float)
    y = data["cor"].to_numpy(dtype=float)
    t_mean = float(t.mean())
    t_scale = float(t.std()) or 1.0
    t_std = (t - t_mean) / t_scale

    knots = _choose_knots(t_std, basis_dimension)
    inv_sqrt_omega = _inverse_sqrt_penalty(knots)
    z = _radial_basis(t_std, knots, inv_sqrt_omega)
    z_names = [f"z{i}" for i in range(z.shape[1])]

    frame = pd.DataFrame(z, columns=z_names)
    frame["cor"] = y
    frame["t_std"] = t_std
    frame["id"] = data["id"].astype(str).to_numpy()
    frame["group"] = 1

    model = smf.mixedlm(
        "cor ~ t_std",
        frame,
        groups="group",
        re_formula="0",
        vc_formula={"smooth": "0 + " + " + ".join(z_names), "id": "0 + C(id)"},
    )

    fit_kwargs = {"reml": True}
    if maxiter is not None:
        fit_kwargs["maxiter"] = maxiter

    logger.info("Fitting trend model on %d points from %d individuals", len(frame), n_individuals)
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always", ConvergenceWarning)
        result = model.fit(**fit_kwargs)

    scale = float(result.scale)
    vc_values = dict(zip(model.exog_vc.names, np.asarray(result.vcomp, dtype=float)))
    var_smooth = vc_values["smooth"]
    var_id = vc_values["id"]

    converged = bool(getattr(result, "converged", True))
    if not converged:
        logger.warning("Trend model optimizer did not converge; estimates are unreliable")
    for w in caught:
        logger.warning(
            "Trend model fit: %s (var_smooth=%.4g, var_id=%.4g, scale=%.4g, n=%d)",
            w.message, var_smooth, var_id, scale, len(frame),
        )

    # mixed model equations at the REML variance estimates
    id_levels = np.array(sorted(frame["id"].unique()))
    r = (frame["id"].to_numpy()[:, None] == id_levels[None, :]).astype(float)
    c = np.column_stack([np.ones_like(t_std), t_std, z, r])

    floor = _MIN_VARIANCE_RATIO * scale
    penalty = np.concatenate(
        [
            np.zeros(2),
            np.full(z.shape[1], scale / max(var_smooth, floor)),
            np.full(r.shape[1], scale / max(var_id, floor)),
        ]
    )
    ctc = c.T @ c
    a_inv = np.linalg.inv(ctc + np.diag(penalty))
    coef = a_inv @ (c.T @ y)
    covariance = scale * a_inv

    edf_each = np.diag(a_inv @ ctc)
    k_smooth = 2 + z.shape[1]
    edf = float(edf_each[1:k_smooth].sum())
    edf_total = float(edf_each.sum())
    residual_df = float(len(y) - edf_total)

    fitted_values = c @ coef
    residuals = y - fitted_values
    r_squared_adj = float(1.0 - np.var(residuals) * (len(y) - 1) / (np.var(y) * max(residual_df, 1.0)))

    f_stat, ref_df, p_value = _smooth_test(
        coef[1:k_smooth], covariance[1:k_smooth, 1:k_smooth], edf, residual_df
    )

    random_effects = pd.Series(coef[k_smooth:], index=id_levels, name="random_intercept")
    random_effects.index.name = "id"

    fitted = pd.DataFrame(
        {
            "id": data["id"].to_numpy(),
            "days_since_start": t,
            "cor": y,
            "fitted": fitted_values,
            "residual": residuals,
        }
    )

    logger.info("Trend model: edf=%.2f F=%.3f p=%.4g R2adj=%.3f", edf, f_stat, p_value, r_squared_adj)

    return TrendModelFit(
        coefficients=coef,
        covariance=covariance,
        knots=knots,
        inv_sqrt_omega=inv_sqrt_omega,
        t_mean=t_mean,
        t_scale=t_scale,
        edf=edf,
        edf_total=edf_total,
        f_statistic=f_stat,
        ref_df=ref_df,
        residual_df=residual_df,
        p_value=p_value,
        r_squared_adj=r_squared_adj,
        reml_llf=float(result.llf),
        variance_components={"smooth": var_smooth, "id": var_id, "residual": scale},
        random_effects=random_effects,
        converged=converged,
        n_obs=len(y),
        n_individuals=n_individuals,
        fitted=fitted,
    )
