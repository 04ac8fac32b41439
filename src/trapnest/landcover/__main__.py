#!/usr/bin/env python3
"""trapnest.landcover

Landscape composition CLI for trapnest.

This is one of several trapnest subsystem CLIs:
- trapnest.landcover → land cover composition around sites (this file)
- trapnest.community → community matrix + null-model functional diversity
- trapnest.analysis  → regression of ses.MFD on urbanization
- trapnest.pipeline  → every stage end to end from one config

trapnest.landcover reads the categorical land cover raster and the site table
and writes one land use table and one missing-data table per buffer radius.

Design notes:
- Radii, class map and exclusion list come from the pipeline YAML
- Lazy-imports the raster stack to keep CLI startup fast
- --dry-run prints the plan without touching the raster

Examples:
  python -m trapnest.landcover extract \
    --raster data/input_data/toronto_2007_landcover.img \
    --sites data/input_data/site_data.csv \
    --out-dir data/intermediate_data

  # one radius only
  python -m trapnest.landcover extract --radii 250
"""

from __future__ import annotations

import argparse
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

from trapnest.config import (
    DEFAULT_PIPELINE_YAML,
    LandCoverConfig,
    coerce_radii,
    load_pipeline_or_defaults,
)


# -----------------------------------------------------------------------------
# CLI structure
# -----------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for trapnest.landcover."""
    ap = argparse.ArgumentParser(
        prog="trapnest.landcover",
        description="Land cover composition around trap-nest sites",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Subsystem CLIs:
  python -m trapnest.landcover  # Land cover composition (this)
  python -m trapnest.community  # Community matrix + ses.MFD
  python -m trapnest.analysis   # Regression on urbanization
  python -m trapnest.pipeline   # Everything
        """,
    )

    # --- Global args ---
    ap.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_PIPELINE_YAML,
        help=f"Path to pipeline YAML (default: {DEFAULT_PIPELINE_YAML}; study defaults if absent)",
    )
    ap.add_argument(
        "--dry-run",
        action="store_true",
        help="Print planned actions without reading the raster or writing files",
    )
    ap.add_argument(
        "--overwrite",
        action="store_true",
        help="Overwrite existing output files",
    )

    # --- Subcommands ---
    sub = ap.add_subparsers(dest="command", required=True)

    # --- extract ---
    extract = sub.add_parser(
        "extract",
        help="Compute percent land cover per site buffer",
        description="""
Compute land cover composition around every site.

This command:
1. Projects the sites into the raster CRS
2. Buffers every site at each radius
3. Drops buffers outside the raster extent
4. Tabulates class codes and no-data cells per buffer
5. Removes sites outside the study area
6. Writes land_use_<r>.csv and missing_<r>.csv per radius
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    extract.add_argument("--raster", type=Path, default=None, help="Land cover raster (default from config)")
    extract.add_argument("--sites", type=Path, default=None, help="Site table CSV (default from config)")
    extract.add_argument("--out-dir", type=Path, default=None, help="Output directory (default from config)")
    extract.add_argument("--radii", nargs="+", type=int, default=None, help="Buffer radii in map units (default: 250 500)")
    extract.add_argument(
        "--max-nodata-percent",
        type=float,
        default=None,
        help="Drop land use rows whose buffer is more than this percent no-data (default: keep all)",
    )

    return ap


# -----------------------------------------------------------------------------
# Command handlers
# -----------------------------------------------------------------------------

def _handle_extract(args: argparse.Namespace) -> int:
    """Handle the extract subcommand."""
    cfg = load_pipeline_or_defaults(args.config)

    raster = args.raster or cfg.paths["raster"]
    sites_path = args.sites or cfg.paths["sites"]
    out_dir = args.out_dir or cfg.paths["intermediate_dir"]

    lc: LandCoverConfig = cfg.landcover
    if args.radii:
        lc = replace(lc, radii=coerce_radii(args.radii))
    if args.max_nodata_percent is not None:
        lc = replace(lc, max_nodata_percent=args.max_nodata_percent)

    if args.dry_run:
        print("[DRY-RUN] Would extract land cover:")
        print(f"  Raster: {raster}")
        print(f"  Sites: {sites_path}")
        print(f"  Radii: {', '.join(str(r) for r in lc.radii)}")
        print(f"  Excluded sites: {len(lc.exclude_sites)}")
        print(f"  Output dir: {out_dir}")
        return 0

    # Lazy import: avoids loading rasterio/geopandas until needed
    from trapnest.landcover.metrics import extract_land_cover, write_land_cover
    from trapnest.sites import load_sites

    sites = load_sites(sites_path)
    results = extract_land_cover(raster, sites, lc)
    write_land_cover(results, out_dir, overwrite=args.overwrite)
    return 0


# -----------------------------------------------------------------------------
# Main entrypoint
# -----------------------------------------------------------------------------

def main(argv: Optional[List[str]] = None) -> int:
    """Main entrypoint for trapnest.landcover CLI."""
    ap = build_parser()
    args = ap.parse_args(argv)

    handlers = {
        "extract": _handle_extract,
    }

    handler = handlers.get(args.command)
    if handler is None:
        raise SystemExit(f"Unknown command: {args.command}")

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
