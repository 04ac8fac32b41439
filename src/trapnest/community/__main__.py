#!/usr/bin/env python3
"""trapnest.community

Community data CLI for trapnest.

This is one of several trapnest subsystem CLIs:
- trapnest.landcover → land cover composition around sites
- trapnest.community → community matrix + null-model functional diversity (this file)
- trapnest.analysis  → regression of ses.MFD on urbanization
- trapnest.pipeline  → every stage end to end from one config

Subcommands:
- summarize → raw trap-nest table → sites x species brood cell matrix
- ses-mfd   → community matrix + trait table → ses.MFD per site

Examples:
  python -m trapnest.community summarize \
    --nests data/input_data/trap_nest_data.csv \
    --sites data/input_data/site_data.csv \
    --out data/analysis_data/comm_matrix_B.csv

  python -m trapnest.community ses-mfd \
    --comm data/analysis_data/comm_matrix_B.csv \
    --traits data/input_data/traits.csv \
    --out data/analysis_data/ses_mfd.csv --runs 999 --seed 1
"""

from __future__ import annotations

import argparse
from dataclasses import replace
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
    """Build the argument parser for trapnest.community."""
    ap = argparse.ArgumentParser(
        prog="trapnest.community",
        description="Community matrix and null-model functional diversity",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Subsystem CLIs:
  python -m trapnest.landcover  # Land cover composition
  python -m trapnest.community  # Community matrix + ses.MFD (this)
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
    ap.add_argument("--dry-run", action="store_true", help="Print planned actions without writing files")
    ap.add_argument("--overwrite", action="store_true", help="Overwrite existing output files")

    sub = ap.add_subparsers(dest="command", required=True)

    # --- summarize ---
    summ = sub.add_parser("summarize", help="Build the sites x species community matrix")
    summ.add_argument("--nests", type=Path, default=None, help="Raw trap-nest CSV (default from config)")
    summ.add_argument("--sites", type=Path, default=None, help="Site table CSV (default from config)")
    summ.add_argument("--out", type=Path, default=None, help="Output CSV (default: <analysis_dir>/comm_matrix_B.csv)")

    # --- ses-mfd ---
    ses = sub.add_parser("ses-mfd", help="Null-model ses.MFD per site")
    ses.add_argument("--comm", type=Path, default=None, help="Community matrix CSV (default: <analysis_dir>/comm_matrix_B.csv)")
    ses.add_argument("--traits", type=Path, default=None, help="Trait table CSV (default from config)")
    ses.add_argument("--out", type=Path, default=None, help="Output CSV (default: <analysis_dir>/ses_mfd.csv)")
    ses.add_argument("--runs", type=int, default=None, help="Null model permutations (default: 999)")
    ses.add_argument("--seed", type=int, default=None, help="Random seed (default from config)")

    return ap


# -----------------------------------------------------------------------------
# Command handlers
# -----------------------------------------------------------------------------

def _handle_summarize(args: argparse.Namespace) -> int:
    cfg = load_pipeline_or_defaults(args.config)
    nests_path = args.nests or cfg.paths["nests"]
    sites_path = args.sites or cfg.paths["sites"]
    out_path = args.out or cfg.paths["analysis_dir"] / "comm_matrix_B.csv"

    if args.dry_run:
        print("[DRY-RUN] Would build community matrix:")
        print(f"  Trap nests: {nests_path}")
        print(f"  Sites: {sites_path}")
        print(f"  Survey years: {', '.join(str(y) for y in cfg.community.survey_years)}")
        print(f"  Output: {out_path}")
        return 0

    if out_path.exists() and not args.overwrite:
        print(f"[SKIP] {out_path} exists (use --overwrite)")
        return 0

    from trapnest.community.summarize import community_matrix, load_nests
    from trapnest.sites import load_sites, surveyed_all_years

    sites = load_sites(sites_path)
    keep = surveyed_all_years(sites, cfg.community.survey_years)
    comm = community_matrix(load_nests(nests_path), keep_sites=keep, config=cfg.community)

    out_path.parent.mkdir(parents=True, exist_ok=True)
    comm.to_csv(out_path)
    print(f"Wrote {comm.shape[0]} sites -> {out_path}")
    return 0


def _handle_ses_mfd(args: argparse.Namespace) -> int:
    cfg = load_pipeline_or_defaults(args.config)
    comm_path = args.comm or cfg.paths["analysis_dir"] / "comm_matrix_B.csv"
    traits_path = args.traits or cfg.paths["traits"]
    out_path = args.out or cfg.paths["analysis_dir"] / "ses_mfd.csv"

    nm = cfg.nullmodel
    if args.runs is not None:
        nm = replace(nm, runs=args.runs)
    if args.seed is not None:
        nm = replace(nm, seed=args.seed)

    if args.dry_run:
        print("[DRY-RUN] Would compute ses.MFD:")
        print(f"  Community: {comm_path}")
        print(f"  Traits: {traits_path}")
        print(f"  Runs/seed: {nm.runs} / {nm.seed}")
        print(f"  Output: {out_path}")
        return 0

    from trapnest.community.ses_mfd import ses_mfd, write_ses
    from trapnest.community.summarize import load_community_matrix
    from trapnest.community.traits import load_traits

    table = ses_mfd(load_community_matrix(comm_path), load_traits(traits_path), nm)
    write_ses(table, out_path, overwrite=args.overwrite)
    return 0


# -----------------------------------------------------------------------------
# Main entrypoint
# -----------------------------------------------------------------------------

def main(argv: Optional[List[str]] = None) -> int:
    """Main entrypoint for trapnest.community CLI."""
    ap = build_parser()
    args = ap.parse_args(argv)

    handlers = {
        "summarize": _handle_summarize,
        "ses-mfd": _handle_ses_mfd,
    }

    handler = handlers.get(args.command)
    if handler is None:
        raise SystemExit(f"Unknown command: {args.command}")

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
