#!/usr/bin/env python3
"""ses_mfd.py

Standardized effect size of mean functional distance (ses.MFD) per site.

For every site with at least two species present:
1. MFD_obs  = abundance-weighted mean pairwise Gower distance among the
              species present, weights = outer product of relative
              abundances (zero-distance self-pairs included)
2. Null     = `runs` randomized communities: the site's richness and
              abundance vector are kept, species identities are drawn
              without replacement from the full species pool
3. SES      = (MFD_obs - mean(null)) / sd(null)
4. p_value  = share of null MFD values <= MFD_obs (ties count)

Low p_value → species more similar than chance (trait clustering), the
signature of environmental filtering.

Sites with fewer than two species are left out entirely: MFD is undefined
for them. A null distribution with zero spread leaves SES undefined (NaN)
for that site only.

Reproducibility: every site row gets its own child seed spawned from the
run seed, so a site's null draws depend only on the seed and its row
position.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from pathlib import Path
from typing import List, Optional

import numpy as np
import pandas as pd

from trapnest.community.traits import gower_distance, validate_alignment
from trapnest.config import NullModelConfig


RESULT_COLUMNS = [
    "site_id",
    "ntaxa",
    "mfd_obs",
    "mfd_rand_mean",
    "mfd_rand_sd",
    "ses_mfd",
    "p_value",
    "runs",
]


@dataclass
class NullModelResult:
    site_id: str
    ntaxa: int
    mfd_obs: float
    mfd_rand_mean: float
    mfd_rand_sd: float
    ses_mfd: float
    p_value: float
    runs: int


# -----------------------------------------------------------------------------
# Statistic
# -----------------------------------------------------------------------------

def weighted_mfd(abundances: np.ndarray, dist: np.ndarray) -> float:
    """Abundance-weighted mean pairwise distance among present species.

    Every ordered pair (i, j) is weighted by p_i * p_j, the product of
    relative abundances, so the weights sum to 1. Self-pairs carry zero
    distance but keep their weight.

    abundances: (k,) positive counts; dist: (k, k) distance matrix in the
    same order. Requires k >= 2.
    """
    w = abundances / abundances.sum()
    return float((np.outer(w, w) * dist).sum())


def null_distribution(
    abundances: np.ndarray,
    dist: np.ndarray,
    runs: int,
    rng: np.random.Generator,
) -> np.ndarray:
    """MFD of `runs` communities with shuffled species identities.

    Richness and the abundance vector stay fixed; species are drawn without
    replacement from every species in dist.
    """
    pool = dist.shape[0]
    k = len(abundances)
    out = np.empty(runs, dtype=float)
    for i in range(runs):
        idx = rng.choice(pool, size=k, replace=False)
        out[i] = weighted_mfd(abundances, dist[np.ix_(idx, idx)])
    return out


def standardized_effect(observed: float, null: np.ndarray) -> tuple:
    """(mean, sd, ses, p_value) for one site; ses is NaN when sd is zero."""
    mean = float(null.mean())
    sd = float(null.std(ddof=1)) if len(null) > 1 else 0.0
    if sd > 0 and np.isfinite(sd):
        ses = (observed - mean) / sd
    else:
        ses = float("nan")
    at_or_below = np.count_nonzero((null < observed) | np.isclose(null, observed))
    p_value = at_or_below / len(null)
    return mean, sd, ses, p_value


# -----------------------------------------------------------------------------
# Core function (called by CLI or trapnest.pipeline)
# -----------------------------------------------------------------------------

def ses_mfd(
    comm: pd.DataFrame,
    traits: pd.DataFrame,
    config: Optional[NullModelConfig] = None,
) -> pd.DataFrame:
    """Null-model ses.MFD for every site of a community matrix.

    Args:
        comm: sites x species abundance matrix (index = site id)
        traits: species x traits; must cover every community species
        config: permutation count and seed

    Returns:
        One row per site with >= 2 species, columns RESULT_COLUMNS.

    Raises:
        SystemExit: If community species lack traits, abundances are
            negative, or trait distances are undefined for some pair.
    """
    config = config or NullModelConfig()

    # Validation happens before any per-site work
    aligned = validate_alignment(comm, traits)
    dist = gower_distance(aligned).to_numpy()
    if np.isnan(dist).any():
        raise SystemExit("Some species pairs share no non-missing trait; Gower distance undefined.")

    values = comm.to_numpy(dtype=float)
    seeds = np.random.SeedSequence(config.seed).spawn(len(comm))

    results: List[NullModelResult] = []
    for row, site_id in enumerate(comm.index.astype(str)):
        present = values[row] > 0
        ntaxa = int(present.sum())
        if ntaxa < 2:
            print(f"[SKIP] {site_id}: {ntaxa} species present, MFD undefined")
            continue

        abundances = values[row, present]
        observed = weighted_mfd(abundances, dist[np.ix_(present, present)])

        rng = np.random.default_rng(seeds[row])
        null = null_distribution(abundances, dist, config.runs, rng)
        mean, sd, ses, p_value = standardized_effect(observed, null)
        if np.isnan(ses):
            print(f"[UNDEFINED] {site_id}: null MFD has zero spread, ses.MFD undefined")

        results.append(NullModelResult(site_id, ntaxa, observed, mean, sd, ses, p_value, config.runs))

    print(f"[SES] {len(results)} of {len(comm)} sites, {config.runs} runs, seed {config.seed}")
    return pd.DataFrame([asdict(r) for r in results], columns=RESULT_COLUMNS)


def write_ses(table: pd.DataFrame, out_path: Path, overwrite: bool = False) -> Optional[Path]:
    if out_path.exists() and not overwrite:
        print(f"[SKIP] {out_path} exists (use --overwrite)")
        return None
    out_path.parent.mkdir(parents=True, exist_ok=True)
    table.to_csv(out_path, index=False)
    print(f"Wrote {len(table)} rows -> {out_path}")
    return out_path


def load_ses(path: Path) -> pd.DataFrame:
    if not path.exists():
        raise SystemExit(f"ses.MFD table not found: {path}")
    return pd.read_csv(path, dtype={"site_id": str})
