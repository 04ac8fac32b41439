#!/usr/bin/env python3
"""summarize.py

Turn the raw trap-nest table (one row per nest tube per year) into a
sites x species community matrix.

Abundance proxy: number of brood cells, summed across survey years.

Steps:
1. Normalize column names (lower snake case)
2. Drop rows without a site id and genus-only records (e.g. Hylaeus_sp)
3. Keep sites surveyed in every year and inside the study area
4. Sum brood cells per (site, species)
5. Pivot wide and zero-fill absences

The output index is the site id; columns are the global species list,
sorted, so every downstream matrix shares the same column order.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Iterable, Optional

import pandas as pd

from trapnest.config import CommunityConfig


def clean_names(columns: Iterable[str]) -> list:
    """Lower snake case column names ("No. Broodcells" → "no_broodcells")."""
    out = []
    for c in columns:
        s = re.sub(r"[^0-9a-zA-Z]+", "_", str(c).strip()).strip("_").lower()
        out.append(s)
    return out


def load_nests(path: Path) -> pd.DataFrame:
    """Load the raw trap-nest CSV with normalized column names."""
    if not path.exists():
        raise SystemExit(f"Trap nest table not found: {path}")
    df = pd.read_csv(path)
    df.columns = clean_names(df.columns)
    return df


def community_matrix(
    nests: pd.DataFrame,
    keep_sites: Optional[Iterable[str]] = None,
    config: Optional[CommunityConfig] = None,
) -> pd.DataFrame:
    """Aggregate the long trap-nest table into a sites x species count matrix.

    Args:
        nests: Long table with site, species and brood cell count columns
        keep_sites: Site IDs to retain (e.g. surveyed in all years); None keeps all
        config: Column names, excluded taxa and excluded sites

    Raises:
        SystemExit: On missing columns, negative or non-integer counts, or an
            empty result.
    """
    config = config or CommunityConfig()
    site_col, species_col, count_col = config.site_col, config.species_col, config.count_col

    missing = [c for c in (site_col, species_col, count_col) if c not in nests.columns]
    if missing:
        raise SystemExit(f"Trap nest table missing columns: {missing}. Available: {list(nests.columns)}")

    df = nests[nests[site_col].notna()].copy()
    df[site_col] = df[site_col].astype(str)
    df = df[~df[species_col].isin(config.exclude_taxa)]

    if keep_sites is not None:
        df = df[df[site_col].isin(set(keep_sites))]
    df = df[~df[site_col].isin(set(config.exclude_sites))].copy()
    if df.empty:
        raise SystemExit("Community matrix is empty after filtering; check site selection and column names.")

    counts = df[count_col].fillna(0)
    if (counts < 0).any():
        raise SystemExit(f"Negative brood cell counts in column '{count_col}'")
    if not (counts == counts.round()).all():
        raise SystemExit(f"Non-integer brood cell counts in column '{count_col}'")
    df[count_col] = counts.astype(int)

    comm = (
        df.groupby([site_col, species_col])[count_col]
        .sum()
        .unstack(species_col, fill_value=0)
        .sort_index(axis=0)
        .sort_index(axis=1)
        .astype(int)
    )
    comm.index.name = "site"
    comm.columns.name = None

    if comm.empty:
        raise SystemExit("Community matrix is empty after filtering; check site selection and column names.")

    print(f"[COMMUNITY] {comm.shape[0]} sites x {comm.shape[1]} species, {int(comm.values.sum())} brood cells")
    return comm


def species_richness(comm: pd.DataFrame) -> pd.Series:
    """Number of species present (abundance > 0) per site."""
    return (comm > 0).sum(axis=1).rename("ntaxa")


def load_community_matrix(path: Path) -> pd.DataFrame:
    """Read a community matrix CSV written by community_matrix()."""
    if not path.exists():
        raise SystemExit(f"Community matrix not found: {path}")
    # Site IDs stay strings ("007" must not become 7)
    raw = pd.read_csv(path, dtype=str)
    comm = raw.set_index(raw.columns[0]).astype(int)
    comm.index.name = "site"
    return comm
