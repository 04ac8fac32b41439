#!/usr/bin/env python3

from __future__ import annotations

from pathlib import Path

import pytest

from trapnest import config as cfg

ROOT = Path(__file__).resolve().parents[1]


def test_defaults_from_empty_yaml():
    pc = cfg.pipeline_config_from_yaml({})
    assert pc.landcover.radii == (250, 500)
    assert pc.landcover.classes == cfg.LAND_COVER_CLASSES
    assert pc.landcover.exclude_sites == cfg.OUTSIDE_STUDY_AREA
    assert pc.landcover.max_nodata_percent is None
    assert pc.nullmodel.runs == 999
    assert pc.analysis.knn == 8
    assert pc.paths["raster"] == cfg.DEFAULT_PATHS["raster"]


def test_shipped_pipeline_yaml_matches_defaults():
    pc = cfg.load_pipeline_yaml(ROOT / "config" / "pipeline.yaml")
    defaults = cfg.pipeline_config_from_yaml({})
    assert pc.landcover == defaults.landcover
    assert pc.community == defaults.community
    assert pc.nullmodel == defaults.nullmodel
    assert pc.analysis == defaults.analysis


def test_yaml_overrides(tmp_path):
    path = tmp_path / "pipeline.yaml"
    path.write_text(
        "paths:\n  raster: other.tif\n"
        "landcover:\n  radii: ['100']\n  max_nodata_percent: 40\n  exclude_sites: []\n"
        "nullmodel:\n  runs: 50\n  seed: 7\n"
    )
    pc = cfg.load_pipeline_yaml(path)
    assert pc.paths["raster"] == Path("other.tif")
    assert pc.paths["sites"] == cfg.DEFAULT_PATHS["sites"]
    assert pc.landcover.radii == (100,)
    assert pc.landcover.max_nodata_percent == 40.0
    assert pc.landcover.exclude_sites == ()
    assert (pc.nullmodel.runs, pc.nullmodel.seed) == (50, 7)


def test_class_codes_from_yaml_strings():
    assert cfg.coerce_class_map({"1": "tree", "2": "grass"}) == {1: "tree", 2: "grass"}


def test_invalid_values_raise():
    with pytest.raises(ValueError):
        cfg.coerce_radii([250, -1])
    with pytest.raises(ValueError):
        cfg.coerce_class_map({1: "tree", 2: "tree"})
    with pytest.raises(ValueError):
        cfg.LandCoverConfig(urban_classes=("asphalt",))
    with pytest.raises(ValueError):
        cfg.LandCoverConfig(max_nodata_percent=120)
    with pytest.raises(ValueError):
        cfg.NullModelConfig(runs=0)
    with pytest.raises(ValueError):
        cfg.pipeline_config_from_yaml({"landcover": [250]})


def test_missing_or_non_mapping_yaml(tmp_path):
    with pytest.raises(SystemExit, match="not found"):
        cfg.load_yaml(tmp_path / "missing.yaml")
    path = tmp_path / "list.yaml"
    path.write_text("- a\n- b\n")
    with pytest.raises(SystemExit, match="mapping"):
        cfg.load_yaml(path)


def test_missing_pipeline_yaml_uses_defaults(tmp_path, capsys):
    pc = cfg.load_pipeline_or_defaults(tmp_path / "pipeline.yaml")
    assert pc.landcover.radii == cfg.DEFAULT_RADII
    assert "[CONFIG]" in capsys.readouterr().out


def test_scale_columns_in_code_order():
    assert cfg.scale_columns({2: "grass", 1: "tree"}, 500) == ["perc_tree_500", "perc_grass_500"]
