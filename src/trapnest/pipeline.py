#!/usr/bin/env python3
"""trapnest.pipeline

Run every trapnest stage end to end from one pipeline YAML.

Stages hand their tables to the next stage directly; the CSVs written along
the way are outputs for inspection, never read back:

  sites ─┬─> landcover.extract_land_cover ──> land use per radius ─┐
         │                                                         ├─> analysis.analyze_scale (per radius)
         └─> community.community_matrix ──> community.ses_mfd ─────┘

Example:
  python -m trapnest.pipeline --config config/pipeline.yaml --overwrite
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd

from trapnest.config import DEFAULT_PIPELINE_YAML, PipelineConfig, load_pipeline_or_defaults


@dataclass
class PipelineResult:
    land_cover: Dict[int, object] = field(default_factory=dict)
    community: Optional[pd.DataFrame] = None
    ses: Optional[pd.DataFrame] = None
    regressions: Dict[int, tuple] = field(default_factory=dict)


def run_pipeline(cfg: PipelineConfig, *, overwrite: bool = False, analysis: bool = True) -> PipelineResult:
    """Run every stage; write intermediate and final tables under cfg.paths."""
    from trapnest.analysis.regression import analyze_scale, format_summary, write_regression_table
    from trapnest.community.ses_mfd import ses_mfd, write_ses
    from trapnest.community.summarize import community_matrix, load_nests
    from trapnest.community.traits import load_traits
    from trapnest.landcover.metrics import extract_land_cover, write_land_cover
    from trapnest.sites import load_sites, surveyed_all_years

    paths = cfg.paths
    result = PipelineResult()

    sites = load_sites(paths["sites"])

    # --- Land cover ---
    result.land_cover = extract_land_cover(paths["raster"], sites, cfg.landcover)
    write_land_cover(result.land_cover, paths["intermediate_dir"], overwrite=overwrite)

    # --- Community + null model ---
    keep = surveyed_all_years(sites, cfg.community.survey_years)
    result.community = community_matrix(load_nests(paths["nests"]), keep_sites=keep, config=cfg.community)
    comm_path = paths["analysis_dir"] / "comm_matrix_B.csv"
    if comm_path.exists() and not overwrite:
        print(f"[SKIP] {comm_path} exists (use --overwrite)")
    else:
        comm_path.parent.mkdir(parents=True, exist_ok=True)
        result.community.to_csv(comm_path)

    result.ses = ses_mfd(result.community, load_traits(paths["traits"]), cfg.nullmodel)
    write_ses(result.ses, paths["analysis_dir"] / "ses_mfd.csv", overwrite=overwrite)

    if not analysis:
        return result

    # --- Regression per spatial scale ---
    for radius, lc in sorted(result.land_cover.items()):
        table, summary = analyze_scale(
            result.ses,
            lc.land_use,
            sites,
            radius,
            predictors=cfg.analysis.predictors,
            screened=cfg.analysis.screened,
            knn=cfg.analysis.knn,
            projected_crs=cfg.analysis.projected_crs,
        )
        print(format_summary(summary))
        write_regression_table(table, paths["final_dir"] / f"reg_mfd_{radius}.csv", overwrite=overwrite)
        result.regressions[radius] = (table, summary)

    return result


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(prog="trapnest.pipeline", description="Run every trapnest stage")
    ap.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_PIPELINE_YAML,
        help=f"Path to pipeline YAML (default: {DEFAULT_PIPELINE_YAML}; study defaults if absent)",
    )
    ap.add_argument("--overwrite", action="store_true", help="Overwrite existing output files")
    ap.add_argument("--dry-run", action="store_true", help="Print resolved inputs and outputs, then stop")
    ap.add_argument("--no-analysis", action="store_true", help="Stop after ses.MFD (skip regressions)")
    args = ap.parse_args(argv)

    cfg = load_pipeline_or_defaults(args.config)

    if args.dry_run:
        print("[DRY-RUN] Would run pipeline:")
        for name, path in sorted(cfg.paths.items()):
            print(f"  {name}: {path}")
        print(f"  Radii: {', '.join(str(r) for r in cfg.landcover.radii)}")
        print(f"  Null model: {cfg.nullmodel.runs} runs, seed {cfg.nullmodel.seed}")
        return 0

    run_pipeline(cfg, overwrite=args.overwrite, analysis=not args.no_analysis)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
