#!/usr/bin/env python3
"""trapnest.config

Shared configuration utilities for trapnest CLI subsystems.

This module provides common helpers used across trapnest.landcover,
trapnest.community, trapnest.analysis and trapnest.pipeline.

Design notes:
- YAML loading is strict: files must exist and be valid mappings.
- Each YAML section is coerced into a small dataclass with defaults.
- Domain constants (class universe, outside-study-area sites) live here.
- All functions are pure (no side effects on import).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml


# -----------------------------------------------------------------------------
# Domain constants
# -----------------------------------------------------------------------------

# Toronto 2007 land cover (2008 tree canopy study). Codes not listed here
# should never appear inside a buffer; if one does the class map is wrong.
LAND_COVER_CLASSES: Dict[int, str] = {
    1: "tree",
    2: "grass",
    3: "earth",
    4: "water",
    5: "build",
    6: "roads",
    7: "paved",
    8: "agric",
}

# Impervious surface = buildings + roads + other paved surfaces.
URBAN_CLASSES: Tuple[str, ...] = ("build", "roads", "paved")

# Sites lying outside the City of Toronto boundary. Identified by visual
# inspection against the municipal boundary: their buffers can still overlap
# the raster's rectangular extent, so the extent test alone keeps them.
OUTSIDE_STUDY_AREA: Tuple[str, ...] = (
    "GAJVv",
    "SQWq3",
    "N53op",
    "auCMf",
    "lWpWV",
    "Z42dv",
    "h6kO1",
    "sC5O0",
    "wB2e4",
)

DEFAULT_RADII: Tuple[int, ...] = (250, 500)
DEFAULT_SURVEY_YEARS: Tuple[int, ...] = (2011, 2012, 2013)


# -----------------------------------------------------------------------------
# YAML loading
# -----------------------------------------------------------------------------

def load_yaml(path: Path) -> Dict[str, Any]:
    """Load a YAML file and return as dict.

    Raises SystemExit on missing file or invalid format (non-mapping).
    """
    if not path.exists():
        raise SystemExit(f"Config not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise SystemExit(f"Expected YAML mapping at {path}")
    return data


def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    block = data.get(name) or {}
    if not isinstance(block, dict):
        raise ValueError(f"Config section '{name}' must be a mapping, got {type(block).__name__}")
    return block


# -----------------------------------------------------------------------------
# Coercion helpers
# -----------------------------------------------------------------------------

def coerce_radii(x: Any) -> Tuple[int, ...]:
    """Coerce a radius list like [250, "500"] into a tuple of positive ints.

    Returns DEFAULT_RADII if input is missing.
    """
    if x is None:
        return DEFAULT_RADII
    if not isinstance(x, (list, tuple)) or not x:
        raise ValueError(f"radii must be a non-empty list, got {x!r}")
    radii = tuple(int(r) for r in x)
    if any(r <= 0 for r in radii):
        raise ValueError(f"radii must be positive, got {radii}")
    return radii


def coerce_class_map(x: Any) -> Dict[int, str]:
    """Coerce a {code: name} mapping; YAML may give codes as strings."""
    if x is None:
        return dict(LAND_COVER_CLASSES)
    if not isinstance(x, dict) or not x:
        raise ValueError(f"classes must be a non-empty mapping, got {x!r}")
    out = {int(k): str(v) for k, v in x.items()}
    if len(set(out.values())) != len(out):
        raise ValueError(f"class names must be unique: {sorted(out.values())}")
    return out


# -----------------------------------------------------------------------------
# Section dataclasses
# -----------------------------------------------------------------------------

@dataclass
class LandCoverConfig:
    radii: Tuple[int, ...] = DEFAULT_RADII
    classes: Dict[int, str] = field(default_factory=lambda: dict(LAND_COVER_CLASSES))
    urban_classes: Tuple[str, ...] = URBAN_CLASSES
    exclude_sites: Tuple[str, ...] = OUTSIDE_STUDY_AREA
    nodata: Optional[float] = None
    max_nodata_percent: Optional[float] = None
    buffer_resolution: int = 30

    def __post_init__(self) -> None:
        unknown = [c for c in self.urban_classes if c not in self.classes.values()]
        if unknown:
            raise ValueError(f"urban_classes not in class map: {unknown}")
        if self.max_nodata_percent is not None and not 0 <= self.max_nodata_percent <= 100:
            raise ValueError(f"max_nodata_percent must be within [0, 100], got {self.max_nodata_percent}")


@dataclass
class CommunityConfig:
    site_col: str = "id"
    species_col: str = "lower_species"
    count_col: str = "no_broodcells"
    survey_years: Tuple[int, ...] = DEFAULT_SURVEY_YEARS
    exclude_taxa: Tuple[str, ...] = ("Hylaeus_sp",)
    exclude_sites: Tuple[str, ...] = OUTSIDE_STUDY_AREA


@dataclass
class NullModelConfig:
    runs: int = 999
    seed: int = 20210810

    def __post_init__(self) -> None:
        if self.runs < 1:
            raise ValueError(f"runs must be >= 1, got {self.runs}")


@dataclass
class AnalysisConfig:
    predictors: Tuple[str, ...] = ("grass", "urb")
    # Classes dropped from the full model after the collinearity check
    screened: Tuple[str, ...] = ("tree",)
    knn: int = 8
    projected_crs: str = "EPSG:26917"


@dataclass
class PipelineConfig:
    paths: Dict[str, Path]
    landcover: LandCoverConfig
    community: CommunityConfig
    nullmodel: NullModelConfig
    analysis: AnalysisConfig


def _tuple_or(value: Any, default: Tuple) -> Tuple:
    if value is None:
        return default
    if not isinstance(value, (list, tuple)):
        raise ValueError(f"Expected a list, got {value!r}")
    return tuple(value)


def pipeline_config_from_yaml(data: Dict[str, Any]) -> PipelineConfig:
    """Build a PipelineConfig from a parsed pipeline YAML dict.

    Every section is optional; missing keys fall back to the study defaults.
    Relative paths are kept relative (resolved against the working directory).
    """
    paths_block = _section(data, "paths")
    paths = {str(k): Path(v) for k, v in DEFAULT_PATHS.items()}
    paths.update({str(k): Path(str(v)) for k, v in paths_block.items()})

    lc = _section(data, "landcover")
    nodata = lc.get("nodata")
    max_nodata = lc.get("max_nodata_percent")
    landcover = LandCoverConfig(
        radii=coerce_radii(lc.get("radii")),
        classes=coerce_class_map(lc.get("classes")),
        urban_classes=tuple(str(c) for c in _tuple_or(lc.get("urban_classes"), URBAN_CLASSES)),
        exclude_sites=tuple(str(s) for s in _tuple_or(lc.get("exclude_sites"), OUTSIDE_STUDY_AREA)),
        nodata=float(nodata) if nodata is not None else None,
        max_nodata_percent=float(max_nodata) if max_nodata is not None else None,
        buffer_resolution=int(lc.get("buffer_resolution", 30)),
    )

    cm = _section(data, "community")
    community = CommunityConfig(
        site_col=str(cm.get("site_col", "id")),
        species_col=str(cm.get("species_col", "lower_species")),
        count_col=str(cm.get("count_col", "no_broodcells")),
        survey_years=tuple(int(y) for y in _tuple_or(cm.get("survey_years"), DEFAULT_SURVEY_YEARS)),
        exclude_taxa=tuple(str(t) for t in _tuple_or(cm.get("exclude_taxa"), ("Hylaeus_sp",))),
        exclude_sites=tuple(str(s) for s in _tuple_or(cm.get("exclude_sites"), OUTSIDE_STUDY_AREA)),
    )

    nm = _section(data, "nullmodel")
    nullmodel = NullModelConfig(
        runs=int(nm.get("runs", 999)),
        seed=int(nm.get("seed", 20210810)),
    )

    an = _section(data, "analysis")
    analysis = AnalysisConfig(
        predictors=tuple(str(p) for p in _tuple_or(an.get("predictors"), ("grass", "urb"))),
        screened=tuple(str(p) for p in _tuple_or(an.get("screened"), ("tree",))),
        knn=int(an.get("knn", 8)),
        projected_crs=str(an.get("projected_crs", "EPSG:26917")),
    )

    return PipelineConfig(
        paths=paths,
        landcover=landcover,
        community=community,
        nullmodel=nullmodel,
        analysis=analysis,
    )


def load_pipeline_yaml(path: Path) -> PipelineConfig:
    """Load and coerce the pipeline YAML in one step."""
    return pipeline_config_from_yaml(load_yaml(path))


def load_pipeline_or_defaults(path: Path) -> PipelineConfig:
    """Like load_pipeline_yaml, but a missing file means "use the study defaults"."""
    if not path.exists():
        print(f"[CONFIG] {path} not found; using study defaults")
        return pipeline_config_from_yaml({})
    return load_pipeline_yaml(path)


def scale_columns(classes: Dict[int, str], radius: int) -> List[str]:
    """Wide land-use column names for one radius, in class-code order."""
    return [f"perc_{classes[code]}_{radius}" for code in sorted(classes)]


# -----------------------------------------------------------------------------
# Default paths
# -----------------------------------------------------------------------------
# Centralized so all CLIs use the same defaults.

DEFAULT_PIPELINE_YAML = Path("config/pipeline.yaml")

DEFAULT_PATHS: Dict[str, Path] = {
    "raster": Path("data/input_data/toronto_2007_landcover.img"),
    "sites": Path("data/input_data/site_data.csv"),
    "nests": Path("data/input_data/trap_nest_data.csv"),
    "traits": Path("data/input_data/traits.csv"),
    "intermediate_dir": Path("data/intermediate_data"),
    "analysis_dir": Path("data/analysis_data"),
    "final_dir": Path("data/final"),
}
