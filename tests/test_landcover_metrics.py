#!/usr/bin/env python3

from __future__ import annotations

import geopandas as gpd
import numpy as np
import pytest

from trapnest.config import LandCoverConfig
from trapnest.landcover import metrics as lm

# 100 x 100 cells of 10 m → extent x 600000..601000, y 4840000..4841000
CENTRE = (600500.0, 4840500.0)


def _sites(ids, xs, ys, crs="EPSG:32617"):
    return gpd.GeoDataFrame({"ID": ids}, geometry=gpd.points_from_xy(xs, ys), crs=crs)


def _config(**kw):
    kw.setdefault("exclude_sites", ())
    return LandCoverConfig(**kw)


def test_buffer_composition_percentages():
    comp = lm.BufferComposition("s1", 250, {1: 30, 5: 10}, nodata_count=10)
    assert comp.total_count == 50
    assert comp.class_percentages() == {1: 60.0, 5: 20.0}
    assert comp.percent_nodata == 20.0


def test_project_onto_classes_zero_fills():
    dense = lm.project_onto_classes({1: 75.0}, {1: "tree", 2: "grass", 5: "build"})
    assert dense == {1: 75.0, 2: 0.0, 5: 0.0}


def test_project_onto_classes_rejects_unknown_codes():
    with pytest.raises(SystemExit, match="9"):
        lm.project_onto_classes({9: 10.0}, {1: "tree"})


def test_uniform_tree_buffer(write_raster):
    raster = write_raster(np.ones((100, 100), dtype=np.uint8))
    results = lm.extract_land_cover(raster, _sites(["s1"], [CENTRE[0]], [CENTRE[1]]), _config(radii=(250,)))

    row = results[250].land_use.iloc[0]
    assert row["site"] == "s1"
    assert row["perc_tree_250"] == pytest.approx(100.0)
    assert row["perc_urb_250"] == pytest.approx(0.0)
    assert results[250].missing.iloc[0]["perc_nodata_250"] == pytest.approx(0.0)


def test_percentages_and_nodata_sum_to_100(write_raster):
    data = np.ones((100, 100), dtype=np.uint8)
    data[:, 50:] = 5
    data[40:60, 30:45] = 0  # nodata hole
    data[10:30, 55:70] = 6
    raster = write_raster(data)

    sites = _sites(["a", "b", "c"], [600500.0, 600300.0, 600000.0], [4840500.0, 4840700.0, 4840500.0])
    results = lm.extract_land_cover(raster, sites, _config(radii=(250,)))
    land_use = results[250].land_use.set_index("site")
    missing = results[250].missing.set_index("site")

    class_cols = [c for c in land_use.columns if c != "perc_urb_250"]
    totals = land_use[class_cols].sum(axis=1) + missing["perc_nodata_250"]
    np.testing.assert_allclose(totals.to_numpy(), 100.0)

    urban = land_use[["perc_build_250", "perc_roads_250", "perc_paved_250"]].sum(axis=1)
    np.testing.assert_allclose(land_use["perc_urb_250"].to_numpy(), urban.to_numpy())


def test_cells_beyond_raster_edge_count_as_nodata(write_raster):
    raster = write_raster(np.ones((100, 100), dtype=np.uint8))
    # Site on the western edge: half the buffer lies off the raster
    results = lm.extract_land_cover(raster, _sites(["edge"], [600000.0], [4840500.0]), _config(radii=(250,)))

    tree = results[250].land_use.iloc[0]["perc_tree_250"]
    nodata = results[250].missing.iloc[0]["perc_nodata_250"]
    assert 40.0 < tree < 60.0
    assert tree + nodata == pytest.approx(100.0)


def test_buffer_outside_extent_is_skipped(write_raster):
    raster = write_raster(np.ones((100, 100), dtype=np.uint8))
    sites = _sites(["in", "far"], [CENTRE[0], 700000.0], [CENTRE[1], CENTRE[1]])
    results = lm.extract_land_cover(raster, sites, _config(radii=(250,)))

    assert results[250].land_use["site"].tolist() == ["in"]
    assert results[250].missing["site"].tolist() == ["in"]
    assert results[250].skipped == ["far"]


def test_radii_are_independent(write_raster):
    raster = write_raster(np.ones((100, 100), dtype=np.uint8))
    # 300 m west of the raster: only the 500 m buffer reaches it
    sites = _sites(["near", "west"], [CENTRE[0], 599700.0], [CENTRE[1], CENTRE[1]])
    results = lm.extract_land_cover(raster, sites, _config(radii=(250, 500)))

    assert results[250].land_use["site"].tolist() == ["near"]
    assert sorted(results[500].land_use["site"]) == ["near", "west"]
    assert "perc_tree_500" in results[500].land_use.columns
    assert "perc_tree_250" not in results[500].land_use.columns


def test_outside_study_area_sites_removed(write_raster, capsys):
    raster = write_raster(np.ones((100, 100), dtype=np.uint8))
    sites = _sites(["keep", "GAJVv"], [CENTRE[0], 600400.0], [CENTRE[1], CENTRE[1]])
    results = lm.extract_land_cover(raster, sites, LandCoverConfig(radii=(250,)))

    assert results[250].land_use["site"].tolist() == ["keep"]
    assert results[250].missing["site"].tolist() == ["keep"]
    # logged once for the land use table and once for the missing table
    assert capsys.readouterr().out.count("outside study area: GAJVv") == 2


def test_max_nodata_threshold_drops_land_use_only(write_raster):
    raster = write_raster(np.ones((100, 100), dtype=np.uint8))
    sites = _sites(["full", "edge"], [CENTRE[0], 600000.0], [CENTRE[1], CENTRE[1]])
    results = lm.extract_land_cover(raster, sites, _config(radii=(250,), max_nodata_percent=25.0))

    assert results[250].land_use["site"].tolist() == ["full"]
    assert sorted(results[250].missing["site"]) == ["edge", "full"]


def test_unknown_class_code_is_fatal(write_raster):
    data = np.ones((100, 100), dtype=np.uint8)
    data[45:55, 45:55] = 9
    raster = write_raster(data)
    with pytest.raises(SystemExit, match="not in the class map"):
        lm.extract_land_cover(raster, _sites(["s1"], [CENTRE[0]], [CENTRE[1]]), _config(radii=(250,)))


def test_empty_site_list_is_fatal(write_raster):
    raster = write_raster(np.ones((100, 100), dtype=np.uint8))
    with pytest.raises(SystemExit, match="empty"):
        lm.extract_land_cover(raster, _sites([], [], []), _config())


def test_missing_raster_is_fatal(tmp_path):
    with pytest.raises(SystemExit, match="not found"):
        lm.extract_land_cover(tmp_path / "nope.tif", _sites(["s1"], [CENTRE[0]], [CENTRE[1]]), _config())


def test_raster_without_nodata_needs_config(write_raster):
    raster = write_raster(np.ones((100, 100), dtype=np.uint8), nodata=None)
    sites = _sites(["s1"], [CENTRE[0]], [CENTRE[1]])
    with pytest.raises(SystemExit, match="nodata"):
        lm.extract_land_cover(raster, sites, _config(radii=(250,)))

    results = lm.extract_land_cover(raster, sites, _config(radii=(250,), nodata=0))
    assert results[250].land_use.iloc[0]["perc_tree_250"] == pytest.approx(100.0)


def test_write_land_cover_respects_overwrite(write_raster, tmp_path):
    raster = write_raster(np.ones((100, 100), dtype=np.uint8))
    results = lm.extract_land_cover(raster, _sites(["s1"], [CENTRE[0]], [CENTRE[1]]), _config())
    out_dir = tmp_path / "out"

    written = lm.write_land_cover(results, out_dir)
    assert sorted(p.name for p in written) == ["land_use_250.csv", "land_use_500.csv", "missing_250.csv", "missing_500.csv"]
    assert lm.write_land_cover(results, out_dir) == []
    assert len(lm.write_land_cover(results, out_dir, overwrite=True)) == 4
