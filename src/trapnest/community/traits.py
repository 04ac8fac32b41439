#!/usr/bin/env python3
"""traits.py

Species trait table and trait dissimilarity.

The trait table has one row per species (index) and one column per trait.
Numeric columns are treated as continuous traits; everything else as
categorical. Dissimilarity between species is Gower's distance:

- continuous trait:  |x_i - x_j| / range(x)
- categorical trait: 0 if equal, 1 otherwise
- a trait missing for either species is skipped for that pair

and the per-pair distance is the mean over the traits available to both.
"""

from __future__ import annotations

from pathlib import Path
from typing import List

import numpy as np
import pandas as pd


def load_traits(path: Path) -> pd.DataFrame:
    """Load the trait CSV indexed by species (first column)."""
    if not path.exists():
        raise SystemExit(f"Trait table not found: {path}")
    traits = pd.read_csv(path, index_col=0)
    traits.index = traits.index.astype(str)
    if traits.index.duplicated().any():
        dupes = sorted(traits.index[traits.index.duplicated()].unique().tolist())
        raise SystemExit(f"Duplicate species in trait table {path}: {dupes}")
    if traits.shape[1] == 0:
        raise SystemExit(f"Trait table {path} has no trait columns")
    return traits


def missing_species(comm: pd.DataFrame, traits: pd.DataFrame) -> List[str]:
    return sorted(set(map(str, comm.columns)) - set(map(str, traits.index)))


def validate_alignment(comm: pd.DataFrame, traits: pd.DataFrame) -> pd.DataFrame:
    """Check every community species has traits; return traits in community order.

    Misalignment is an input error, never patched over here.
    Raises SystemExit listing the species without traits.
    """
    missing = missing_species(comm, traits)
    if missing:
        raise SystemExit(
            f"{len(missing)} species in the community matrix have no trait data: {missing}\n"
            "Fix the trait table (or the species names) before running the null model."
        )
    values = comm.to_numpy()
    if (values < 0).any():
        raise SystemExit("Community matrix contains negative abundances")
    return traits.loc[[str(c) for c in comm.columns]]


def gower_distance(traits: pd.DataFrame) -> pd.DataFrame:
    """Pairwise Gower dissimilarity between species (rows of traits)."""
    n = len(traits)
    total = np.zeros((n, n), dtype=float)
    weight = np.zeros((n, n), dtype=float)

    for col in traits.columns:
        s = traits[col]
        present = s.notna().to_numpy()
        both = np.outer(present, present)

        if pd.api.types.is_numeric_dtype(s):
            x = s.to_numpy(dtype=float)
            span = np.nanmax(x) - np.nanmin(x) if present.any() else 0.0
            if span > 0:
                d = np.abs(x[:, None] - x[None, :]) / span
            else:
                d = np.zeros((n, n))
        else:
            x = s.astype(object).to_numpy()
            d = (x[:, None] != x[None, :]).astype(float)

        d = np.where(both, d, 0.0)
        total += d
        weight += both

    with np.errstate(invalid="ignore", divide="ignore"):
        dist = np.where(weight > 0, total / weight, np.nan)
    np.fill_diagonal(dist, 0.0)
    return pd.DataFrame(dist, index=traits.index, columns=traits.index)
