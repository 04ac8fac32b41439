#!/usr/bin/env python3
"""trapnest.analysis

Statistical analysis CLI for trapnest.

This is one of several trapnest subsystem CLIs:
- trapnest.landcover → land cover composition around sites
- trapnest.community → community matrix + null-model functional diversity
- trapnest.analysis  → regression of ses.MFD on urbanization (this file)
- trapnest.pipeline  → every stage end to end from one config

Consumes the outputs of trapnest.landcover (land_use_<r>.csv) and
trapnest.community (ses_mfd.csv).

Examples:
  python -m trapnest.analysis regress --radius 250
  python -m trapnest.analysis regress --radius 500 \
    --ses data/analysis_data/ses_mfd.csv \
    --land-use data/intermediate_data/land_use_500.csv \
    --out data/final/reg_mfd_500.csv
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import List, Optional

from trapnest.config import (
    DEFAULT_PIPELINE_YAML,
    load_pipeline_or_defaults,
)


# -----------------------------------------------------------------------------
# CLI structure
# -----------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for trapnest.analysis."""
    ap = argparse.ArgumentParser(
        prog="trapnest.analysis",
        description="Regression of ses.MFD on urbanization",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Subsystem CLIs:
  python -m trapnest.landcover  # Land cover composition
  python -m trapnest.community  # Community matrix + ses.MFD
  python -m trapnest.analysis   # Regression on urbanization (this)
  python -m trapnest.pipeline   # Everything
        """,
    )

    ap.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_PIPELINE_YAML,
        help=f"Path to pipeline YAML (default: {DEFAULT_PIPELINE_YAML}; study defaults if absent)",
    )
    ap.add_argument("--dry-run", action="store_true", help="Print planned actions without writing files")
    ap.add_argument("--overwrite", action="store_true", help="Overwrite existing output files")

    sub = ap.add_subparsers(dest="command", required=True)

    # --- regress ---
    reg = sub.add_parser(
        "regress",
        help="Fit ses.MFD ~ land cover at one spatial scale",
        description="""
Join ses.MFD with land use, fit OLS, report one-tailed coefficient tests,
VIFs and Moran's I of the residuals, and write the regression table.
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    reg.add_argument("--radius", type=int, required=True, help="Spatial scale (buffer radius)")
    reg.add_argument("--ses", type=Path, default=None, help="ses.MFD CSV (default: <analysis_dir>/ses_mfd.csv)")
    reg.add_argument("--land-use", type=Path, default=None, help="Land use CSV (default: <intermediate_dir>/land_use_<r>.csv)")
    reg.add_argument("--sites", type=Path, default=None, help="Site table CSV (default from config)")
    reg.add_argument("--out", type=Path, default=None, help="Output CSV (default: <final_dir>/reg_mfd_<r>.csv)")
    reg.add_argument("--predictors", nargs="+", default=None, help="Land cover classes to use (default: grass urb)")
    reg.add_argument(
        "--screened",
        nargs="*",
        default=None,
        help="Classes in the full-model collinearity check only (default: tree)",
    )

    return ap


# -----------------------------------------------------------------------------
# Command handlers
# -----------------------------------------------------------------------------

def _handle_regress(args: argparse.Namespace) -> int:
    cfg = load_pipeline_or_defaults(args.config)
    radius = args.radius
    ses_path = args.ses or cfg.paths["analysis_dir"] / "ses_mfd.csv"
    land_use_path = args.land_use or cfg.paths["intermediate_dir"] / f"land_use_{radius}.csv"
    sites_path = args.sites or cfg.paths["sites"]
    out_path = args.out or cfg.paths["final_dir"] / f"reg_mfd_{radius}.csv"
    predictors = tuple(args.predictors) if args.predictors else cfg.analysis.predictors
    screened = tuple(args.screened) if args.screened is not None else cfg.analysis.screened

    if args.dry_run:
        print("[DRY-RUN] Would fit regression:")
        print(f"  Radius: {radius}")
        print(f"  ses.MFD: {ses_path}")
        print(f"  Land use: {land_use_path}")
        print(f"  Predictors: {', '.join(predictors)}")
        print(f"  Screened (VIF only): {', '.join(screened) or 'none'}")
        print(f"  Output: {out_path}")
        return 0

    import pandas as pd

    from trapnest.analysis.regression import analyze_scale, format_summary, write_regression_table
    from trapnest.community.ses_mfd import load_ses
    from trapnest.sites import load_sites

    if not land_use_path.exists():
        raise SystemExit(f"Land use table not found: {land_use_path}")
    land_use = pd.read_csv(land_use_path, dtype={"site": str})

    table, summary = analyze_scale(
        load_ses(ses_path),
        land_use,
        load_sites(sites_path),
        radius,
        predictors=predictors,
        screened=screened,
        knn=cfg.analysis.knn,
        projected_crs=cfg.analysis.projected_crs,
    )
    print(format_summary(summary))
    write_regression_table(table, out_path, overwrite=args.overwrite)
    return 0


# -----------------------------------------------------------------------------
# Main entrypoint
# -----------------------------------------------------------------------------

def main(argv: Optional[List[str]] = None) -> int:
    """Main entrypoint for trapnest.analysis CLI."""
    ap = build_parser()
    args = ap.parse_args(argv)

    handlers = {
        "regress": _handle_regress,
    }

    handler = handlers.get(args.command)
    if handler is None:
        raise SystemExit(f"Unknown command: {args.command}")

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
