#!/usr/bin/env python3
"""metrics.py

Landscape composition around trap-nest sites.

For each site and each buffer radius (250 m, 500 m by default) this module:
1. Projects the site points into the land-cover raster CRS (once, all sites)
2. Builds a circular buffer around every site
3. Drops buffers that do not touch the raster extent at all
4. Reads the raster cells under each buffer and tabulates class codes
   against no-data cells
5. Converts counts to percent of the buffer's total cell count
6. Projects the sparse {code: percent} mapping onto the full class universe
   (absent classes → 0.0) and adds the derived urban percentage
7. Removes the outside-study-area sites

Outputs per radius:
- land use table: site, perc_<class>_<r> for every class, perc_urb_<r>
- missing table:  site, perc_nodata_<r>

Notes:
- The denominator is covered + no-data cells. Buffer cells that fall beyond
  the raster edge are read as no-data, so class percentages of a
  half-covered buffer never sum to 100.
- Radii share nothing: each one rebuilds its own buffers and skip list.
- A cell belongs to a buffer when its centre lies inside the polygon.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import geopandas as gpd
import numpy as np
import pandas as pd
import rasterio
from rasterio.errors import RasterioIOError
from rasterio.features import geometry_mask
from rasterio.windows import Window
from shapely.geometry import box

from trapnest.config import LandCoverConfig, scale_columns
from trapnest.sites import SITE_ID, drop_outside_study_area


# -----------------------------------------------------------------------------
# Per-buffer composition
# -----------------------------------------------------------------------------

@dataclass
class BufferComposition:
    """Cell counts for one site buffer at one radius."""

    site_id: str
    radius: int
    class_counts: Dict[int, int] = field(default_factory=dict)
    nodata_count: int = 0

    @property
    def total_count(self) -> int:
        return int(sum(self.class_counts.values())) + int(self.nodata_count)

    def class_percentages(self) -> Dict[int, float]:
        """Sparse {code: percent of buffer}; only observed codes appear."""
        total = self.total_count
        return {code: 100.0 * n / total for code, n in self.class_counts.items()}

    @property
    def percent_nodata(self) -> float:
        return 100.0 * self.nodata_count / self.total_count


@dataclass
class LandCoverResult:
    radius: int
    land_use: pd.DataFrame
    missing: pd.DataFrame
    skipped: List[str] = field(default_factory=list)


# -----------------------------------------------------------------------------
# Geometry helpers
# -----------------------------------------------------------------------------

def project_sites(sites: gpd.GeoDataFrame, crs) -> gpd.GeoDataFrame:
    """Reproject site points into the raster CRS.

    Raises SystemExit on an empty site list or sites without a CRS.
    """
    if sites is None or sites.empty:
        raise SystemExit("Site list is empty; nothing to extract")
    if sites.crs is None:
        raise SystemExit("Site geometries have no CRS; can't project onto the raster safely.")
    if crs is None:
        raise SystemExit("Land cover raster has no CRS; everything downstream depends on CRS.")
    return sites.to_crs(crs)


def site_buffers(sites: gpd.GeoDataFrame, radius: float, resolution: int = 30) -> gpd.GeoSeries:
    """Circular buffers indexed by site ID, in the sites' (projected) CRS."""
    buffers = sites.geometry.buffer(radius, resolution=resolution)
    buffers.index = sites[SITE_ID].astype(str)
    return buffers


def intersects_extent(geom, bounds: Tuple[float, float, float, float]) -> bool:
    """True when the buffer touches the raster's rectangular extent."""
    return bool(box(*bounds).intersects(geom))


def _buffer_window(src, geom) -> Window:
    """Integer pixel window covering the buffer's bounds (may extend past the raster)."""
    minx, miny, maxx, maxy = geom.bounds
    row_start, col_start = src.index(minx, maxy)
    row_stop, col_stop = src.index(maxx, miny)
    return Window(col_start, row_start, col_stop - col_start + 1, row_stop - row_start + 1)


def _nodata_mask(values: np.ndarray, nodata: float) -> np.ndarray:
    if np.issubdtype(values.dtype, np.floating) and np.isnan(nodata):
        return np.isnan(values)
    return values == nodata


def tabulate_buffer(src, geom, nodata: float) -> Tuple[Dict[int, int], int]:
    """Count class codes and no-data cells whose centres fall inside geom."""
    win = _buffer_window(src, geom)
    data = src.read(1, window=win, boundless=True, fill_value=nodata)
    inside = geometry_mask(
        [geom],
        out_shape=data.shape,
        transform=src.window_transform(win),
        invert=True,
    )
    values = data[inside]
    is_nodata = _nodata_mask(values, nodata)
    codes, counts = np.unique(values[~is_nodata], return_counts=True)
    class_counts = {int(c): int(n) for c, n in zip(codes, counts)}
    return class_counts, int(is_nodata.sum())


def compose_buffers(src, buffers: gpd.GeoSeries, radius: int, nodata: float) -> Tuple[List[BufferComposition], List[str]]:
    """Tabulate every buffer that touches the raster extent.

    Returns (compositions, skipped site IDs).
    """
    compositions: List[BufferComposition] = []
    skipped: List[str] = []
    for site_id, geom in buffers.items():
        if not intersects_extent(geom, tuple(src.bounds)):
            print(f"[SKIP] {site_id} ({radius}m): buffer outside raster extent")
            skipped.append(site_id)
            continue

        class_counts, nodata_count = tabulate_buffer(src, geom, nodata)
        comp = BufferComposition(site_id, radius, class_counts, nodata_count)
        if comp.total_count == 0:
            print(f"[SKIP] {site_id} ({radius}m): buffer covers no cell centres")
            skipped.append(site_id)
            continue
        compositions.append(comp)
    return compositions, skipped


# -----------------------------------------------------------------------------
# Sparse → dense tables
# -----------------------------------------------------------------------------

def project_onto_classes(sparse: Dict[int, float], classes: Dict[int, str]) -> Dict[int, float]:
    """Project observed {code: percent} onto the full class universe.

    Raises SystemExit on codes missing from the class map.
    """
    unknown = sorted(set(sparse) - set(classes))
    if unknown:
        raise SystemExit(
            f"Raster contains class codes not in the class map: {unknown}\n"
            f"Known codes: {sorted(classes)}"
        )
    return {code: float(sparse.get(code, 0.0)) for code in sorted(classes)}


def land_use_table(
    compositions: Sequence[BufferComposition],
    classes: Dict[int, str],
    radius: int,
    urban_classes: Iterable[str],
) -> pd.DataFrame:
    """One row per site, one perc_<class>_<r> column per class plus perc_urb_<r>."""
    columns = scale_columns(classes, radius)
    rows = []
    for comp in compositions:
        dense = project_onto_classes(comp.class_percentages(), classes)
        row = {"site": comp.site_id}
        row.update({f"perc_{classes[code]}_{radius}": pct for code, pct in dense.items()})
        rows.append(row)

    df = pd.DataFrame(rows, columns=["site"] + columns)
    df[f"perc_urb_{radius}"] = df[[f"perc_{c}_{radius}" for c in urban_classes]].sum(axis=1)
    return df


def missing_table(compositions: Sequence[BufferComposition], radius: int) -> pd.DataFrame:
    return pd.DataFrame(
        [{"site": comp.site_id, f"perc_nodata_{radius}": comp.percent_nodata} for comp in compositions],
        columns=["site", f"perc_nodata_{radius}"],
    )


def _drop_sparse_buffers(land_use: pd.DataFrame, missing: pd.DataFrame, radius: int, max_nodata_percent: float) -> pd.DataFrame:
    col = f"perc_nodata_{radius}"
    too_sparse = missing.loc[missing[col] > max_nodata_percent, "site"].tolist()
    for site_id in too_sparse:
        print(f"[SKIP] {site_id} ({radius}m): no-data exceeds {max_nodata_percent:g}% of buffer")
    return land_use[~land_use["site"].isin(too_sparse)].reset_index(drop=True)


# -----------------------------------------------------------------------------
# Core function (called by CLI or trapnest.pipeline)
# -----------------------------------------------------------------------------

def extract_land_cover(
    raster_path: Path,
    sites: gpd.GeoDataFrame,
    config: Optional[LandCoverConfig] = None,
) -> Dict[int, LandCoverResult]:
    """Compute land cover composition around every site at every radius.

    Args:
        raster_path: Categorical land cover raster with an embedded CRS
        sites: Site points (any CRS) with an "ID" column
        config: Radii, class map, exclusion list and thresholds

    Returns:
        {radius: LandCoverResult}

    Raises:
        SystemExit: On unreadable raster, missing nodata value, empty site
            list or raster codes absent from the class map.
    """
    config = config or LandCoverConfig()

    if not raster_path.exists():
        raise SystemExit(f"Land cover raster not found: {raster_path}")

    results: Dict[int, LandCoverResult] = {}
    try:
        with rasterio.open(raster_path) as src:
            nodata = config.nodata if config.nodata is not None else src.nodata
            if nodata is None:
                raise SystemExit(
                    f"Raster {raster_path} defines no nodata value. "
                    "Set landcover.nodata in the pipeline config."
                )

            projected = project_sites(sites, src.crs)
            print(f"[LANDCOVER] {len(projected)} sites projected to {src.crs}")

            for radius in config.radii:
                buffers = site_buffers(projected, radius, resolution=config.buffer_resolution)
                compositions, skipped = compose_buffers(src, buffers, radius, nodata)

                land_use = land_use_table(compositions, config.classes, radius, config.urban_classes)
                missing = missing_table(compositions, radius)

                if config.max_nodata_percent is not None:
                    land_use = _drop_sparse_buffers(land_use, missing, radius, config.max_nodata_percent)

                land_use = drop_outside_study_area(land_use, "site", config.exclude_sites).reset_index(drop=True)
                missing = drop_outside_study_area(missing, "site", config.exclude_sites).reset_index(drop=True)

                print(f"[LANDCOVER] {radius}m: {len(land_use)} sites with land use, {len(skipped)} skipped")
                results[radius] = LandCoverResult(radius, land_use, missing, skipped)
    except RasterioIOError as e:
        raise SystemExit(f"Failed to read land cover raster {raster_path}: {e}") from e

    return results


def write_land_cover(results: Dict[int, LandCoverResult], out_dir: Path, overwrite: bool = False) -> List[Path]:
    """Write land_use_<r>.csv and missing_<r>.csv for every radius."""
    out_dir.mkdir(parents=True, exist_ok=True)
    written: List[Path] = []
    for radius, result in sorted(results.items()):
        for stem, frame in (("land_use", result.land_use), ("missing", result.missing)):
            out_path = out_dir / f"{stem}_{radius}.csv"
            if out_path.exists() and not overwrite:
                print(f"[SKIP] {out_path} exists (use --overwrite)")
                continue
            frame.to_csv(out_path, index=False)
            print(f"Wrote {len(frame)} rows -> {out_path}")
            written.append(out_path)
    return written
