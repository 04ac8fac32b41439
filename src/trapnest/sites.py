#!/usr/bin/env python3
"""trapnest.sites

Site table loading and selection.

The site table is the reference record for every trap-nest location:
- ID            → stable site identifier (joins every other table)
- Latitude      → WGS84 latitude
- Longitude     → WGS84 longitude
- Habitat_type  → urban green space category (Community, Roof, Garden, Park, ...)
- Year_2011 ... → survey-presence flags ("Y" / "N")

Latitude and longitude are sensitive and not published with the study data,
so a missing site table is a hard error with a pointer to that fact.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, List, Sequence

import geopandas as gpd
import pandas as pd


SITE_ID = "ID"
REQUIRED_COLUMNS = ("ID", "Latitude", "Longitude", "Habitat_type")

HABITAT_LABELS = {
    "Community": "Community Garden",
    "Roof": "Green Roof",
    "Garden": "Home Garden",
    "Park": "Public Park",
}


def load_sites(path: Path) -> gpd.GeoDataFrame:
    """Load the site CSV as point geometries in EPSG:4326.

    Raises SystemExit on missing file, missing columns or zero rows.
    """
    if not path.exists():
        raise SystemExit(
            f"Site table not found: {path}\n"
            "Site coordinates are not public; request them from the study authors."
        )
    df = pd.read_csv(path, dtype={SITE_ID: str})

    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise SystemExit(f"Site table {path} missing columns: {missing}")
    if df.empty:
        raise SystemExit(f"Site table {path} has zero rows")

    df = df[df[SITE_ID].notna()].copy()
    if df[SITE_ID].duplicated().any():
        dupes = sorted(df.loc[df[SITE_ID].duplicated(), SITE_ID].unique().tolist())
        raise SystemExit(f"Duplicate site IDs in {path}: {dupes}")

    return gpd.GeoDataFrame(
        df,
        geometry=gpd.points_from_xy(df["Longitude"], df["Latitude"]),
        crs="EPSG:4326",
    )


def year_columns(years: Iterable[int]) -> List[str]:
    return [f"Year_{y}" for y in years]


def surveyed_all_years(sites: pd.DataFrame, years: Sequence[int]) -> List[str]:
    """IDs of sites flagged "Y" in every survey year."""
    cols = year_columns(years)
    missing = [c for c in cols if c not in sites.columns]
    if missing:
        raise SystemExit(f"Site table missing survey-year columns: {missing}")
    flags = sites[cols].astype(str).apply(lambda s: s.str.strip().str.upper())
    keep = (flags == "Y").all(axis=1)
    return sites.loc[keep, SITE_ID].astype(str).tolist()


def drop_outside_study_area(frame: pd.DataFrame, column: str, exclude: Iterable[str]) -> pd.DataFrame:
    """Remove rows whose site identifier is on the exclusion list."""
    exclude = set(exclude)
    dropped = sorted(set(frame[column].astype(str)) & exclude)
    if dropped:
        print(f"[SKIP] {len(dropped)} site(s) outside study area: {', '.join(dropped)}")
    return frame[~frame[column].astype(str).isin(exclude)].copy()


def label_habitats(sites: pd.DataFrame) -> pd.Series:
    """Human-readable habitat labels; unknown categories pass through."""
    return sites["Habitat_type"].map(lambda h: HABITAT_LABELS.get(h, h))
