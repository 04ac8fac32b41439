#!/usr/bin/env python3
"""regression.py

Does urbanization filter trait composition? Regress ses.MFD on land cover.

Per spatial scale:
1. Join ses.MFD, land use and site info. Sites missing either side drop
   out (single-species sites have no ses.MFD; sites outside the raster or
   study area have no land use).
2. Check collinearity: VIF of the full model (grass + tree + impervious).
   Tree and impervious cover are strongly collinear, so tree is screened
   out and the final model keeps grass + impervious only (VIF again).
3. OLS: ses_mfd ~ perc_grass_<r> + perc_urb_<r>
4. One-tailed coefficient tests, H1: beta < 0 (more urban → more clustered)
5. Global Moran's I on the residuals, k nearest neighbours, row-standardized
   weights, with the analytical expectation/variance for regression
   residuals (Cliff & Ord).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Sequence

import geopandas as gpd
import numpy as np
import pandas as pd
import statsmodels.api as sm
import statsmodels.formula.api as smf
from scipy import stats
from scipy.spatial import KDTree
from statsmodels.stats.outliers_influence import variance_inflation_factor

from trapnest.sites import SITE_ID, label_habitats


@dataclass
class MoranResult:
    statistic: float
    expected: float
    variance: float
    z: float
    p_value: float
    k: int


@dataclass
class ModelSummary:
    radius: int
    formula: str
    n: int
    coefficients: pd.DataFrame
    adj_r_squared: float
    vif: Dict[str, float] = field(default_factory=dict)
    full_formula: str = ""
    full_vif: Dict[str, float] = field(default_factory=dict)
    moran: Optional[MoranResult] = None
    fit: object = None


# -----------------------------------------------------------------------------
# Table assembly
# -----------------------------------------------------------------------------

def assemble_regression_table(
    ses: pd.DataFrame,
    land_use: pd.DataFrame,
    sites: gpd.GeoDataFrame,
    radius: int,
    projected_crs: str = "EPSG:26917",
) -> pd.DataFrame:
    """One row per site that has both a defined ses.MFD and land use at radius."""
    ses = ses.assign(site_id=ses["site_id"].astype(str))
    land_use = land_use.assign(site=land_use["site"].astype(str))

    df = ses.merge(land_use, left_on="site_id", right_on="site", how="inner")
    df = df[df["ses_mfd"].notna()]

    projected = sites.to_crs(projected_crs)
    info = pd.DataFrame({
        SITE_ID: projected[SITE_ID].astype(str).to_numpy(),
        "habitat_type": label_habitats(projected).to_numpy(),
        "longs": sites["Longitude"].to_numpy(),
        "lats": sites["Latitude"].to_numpy(),
        "x": projected.geometry.x.to_numpy(),
        "y": projected.geometry.y.to_numpy(),
    })
    df = df.merge(info, left_on="site_id", right_on=SITE_ID, how="left")

    perc_cols = [c for c in land_use.columns if c.startswith("perc_") and c.endswith(f"_{radius}")]
    keep = ["site", "habitat_type", "longs", "lats", "x", "y", "ntaxa", "mfd_obs", "ses_mfd", "p_value"] + perc_cols
    out = df[keep].sort_values("site").reset_index(drop=True)
    print(f"[ANALYSIS] {radius}m: {len(out)} sites with ses.MFD and land use")
    return out


# -----------------------------------------------------------------------------
# Models
# -----------------------------------------------------------------------------

def predictor_columns(predictors: Sequence[str], radius: int) -> list:
    return [f"perc_{p}_{radius}" for p in predictors]


def variance_inflation(df: pd.DataFrame, columns: Sequence[str]) -> Dict[str, float]:
    """VIF per predictor, computed with an intercept in the design."""
    exog = sm.add_constant(df[list(columns)].astype(float), has_constant="add")
    values = exog.to_numpy()
    return {col: float(variance_inflation_factor(values, i)) for i, col in enumerate(columns, start=1)}


def one_tailed_lower(fit) -> pd.Series:
    """P(T <= t) per coefficient, for H1: beta < 0."""
    return pd.Series(stats.t.cdf(fit.tvalues, fit.df_resid), index=fit.tvalues.index)


def fit_urbanization_model(
    df: pd.DataFrame,
    radius: int,
    predictors: Sequence[str] = ("grass", "urb"),
    screened: Sequence[str] = ("tree",),
) -> ModelSummary:
    """OLS of ses_mfd on the land cover predictors at one radius.

    The full model (predictors + screened) is only used for its VIFs, the
    evidence for dropping the screened classes; the reduced model is fitted.

    Raises SystemExit when there are too few sites to fit the model.
    """
    columns = predictor_columns(predictors, radius)
    full_columns = columns + [c for c in predictor_columns(screened, radius) if c not in columns]
    missing = [c for c in full_columns if c not in df.columns]
    if missing:
        raise SystemExit(f"Regression table missing predictors: {missing}")
    if len(df) <= len(columns) + 1:
        raise SystemExit(f"Need more than {len(columns) + 1} sites to fit {len(columns)} predictors, got {len(df)}")

    formula = "ses_mfd ~ " + " + ".join(columns)
    fit = smf.ols(formula, data=df).fit()

    coefficients = pd.DataFrame({
        "estimate": fit.params,
        "std_err": fit.bse,
        "t": fit.tvalues,
        "p_two_sided": fit.pvalues,
        "p_lower": one_tailed_lower(fit),
    })

    return ModelSummary(
        radius=radius,
        formula=formula,
        n=int(fit.nobs),
        coefficients=coefficients,
        adj_r_squared=float(fit.rsquared_adj),
        vif=variance_inflation(df, columns) if len(columns) > 1 else {},
        full_formula="ses_mfd ~ " + " + ".join(full_columns),
        full_vif=variance_inflation(df, full_columns) if len(full_columns) > 1 else {},
        fit=fit,
    )


# -----------------------------------------------------------------------------
# Spatial autocorrelation
# -----------------------------------------------------------------------------

def knn_weights(coords: np.ndarray, k: int = 8) -> np.ndarray:
    """Dense row-standardized k-nearest-neighbour weights (self excluded)."""
    n = len(coords)
    if n <= k:
        raise SystemExit(f"Need more than k={k} sites for k-nearest-neighbour weights, got {n}")
    tree = KDTree(coords)
    _, idx = tree.query(coords, k=k + 1)
    w = np.zeros((n, n), dtype=float)
    for i in range(n):
        neighbours = [j for j in idx[i] if j != i][:k]
        w[i, neighbours] = 1.0 / k
    return w


def residual_morans_i(fit, coords: np.ndarray, k: int = 8) -> MoranResult:
    """Global Moran's I of OLS residuals (one-sided, alternative: greater)."""
    w = knn_weights(np.asarray(coords, dtype=float), k=k)
    e = np.asarray(fit.resid, dtype=float)
    x = np.asarray(fit.model.exog, dtype=float)
    n, p = x.shape
    s0 = w.sum()

    statistic = (n / s0) * (e @ w @ e) / (e @ e)

    m = np.eye(n) - x @ np.linalg.inv(x.T @ x) @ x.T
    mw = m @ w
    tr_mw = np.trace(mw)
    expected = (n / s0) * tr_mw / (n - p)
    variance = (n / s0) ** 2 * (
        (np.trace(mw @ mw.T) + np.trace(mw @ mw) + tr_mw ** 2) / ((n - p) * (n - p + 2))
    ) - expected ** 2

    z = (statistic - expected) / np.sqrt(variance)
    return MoranResult(
        statistic=float(statistic),
        expected=float(expected),
        variance=float(variance),
        z=float(z),
        p_value=float(stats.norm.sf(z)),
        k=k,
    )


def analyze_scale(
    ses: pd.DataFrame,
    land_use: pd.DataFrame,
    sites: gpd.GeoDataFrame,
    radius: int,
    predictors: Sequence[str] = ("grass", "urb"),
    screened: Sequence[str] = ("tree",),
    knn: int = 8,
    projected_crs: str = "EPSG:26917",
) -> tuple:
    """Assemble, fit and test one spatial scale. Returns (table, summary)."""
    table = assemble_regression_table(ses, land_use, sites, radius, projected_crs=projected_crs)
    summary = fit_urbanization_model(table, radius, predictors, screened)
    summary.moran = residual_morans_i(summary.fit, table[["x", "y"]].to_numpy(), k=knn)
    return table, summary


def format_summary(summary: ModelSummary) -> str:
    lines = [
        f"[ANALYSIS] {summary.radius}m  {summary.formula}  (n={summary.n})",
        f"  adj. R^2 = {summary.adj_r_squared:.3f}",
    ]
    for name, row in summary.coefficients.iterrows():
        lines.append(
            f"  {name:<18} b={row['estimate']:+.4f}  se={row['std_err']:.4f}  "
            f"t={row['t']:+.3f}  p(b<0)={row['p_lower']:.4f}"
        )
    if summary.full_vif:
        lines.append(f"  collinearity check: {summary.full_formula}")
        for name, value in summary.full_vif.items():
            lines.append(f"  VIF (full) {name:<14} {value:.2f}")
    for name, value in summary.vif.items():
        lines.append(f"  VIF {name:<14} {value:.2f}")
    if summary.moran is not None:
        m = summary.moran
        lines.append(f"  Moran's I (k={m.k}) = {m.statistic:.4f}, E = {m.expected:.4f}, z = {m.z:.3f}, p = {m.p_value:.4f}")
    return "\n".join(lines)


def write_regression_table(table: pd.DataFrame, out_path: Path, overwrite: bool = False) -> Optional[Path]:
    if out_path.exists() and not overwrite:
        print(f"[SKIP] {out_path} exists (use --overwrite)")
        return None
    out_path.parent.mkdir(parents=True, exist_ok=True)
    table.to_csv(out_path, index=False)
    print(f"Wrote {len(table)} rows -> {out_path}")
    return out_path
