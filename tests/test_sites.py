#!/usr/bin/env python3

from __future__ import annotations

import pandas as pd
import pytest

from trapnest import sites as st

SITES = """ID,Latitude,Longitude,Habitat_type,Year_2011,Year_2012,Year_2013
s1,43.70,-79.40,Garden,Y,Y,Y
s2,43.71,-79.41,Roof,Y,N,Y
s3,43.72,-79.42,Park,y,Y,Y
GAJVv,43.90,-79.60,Community,Y,Y,Y
"""


@pytest.fixture
def site_csv(tmp_path):
    path = tmp_path / "site_data.csv"
    path.write_text(SITES)
    return path


def test_load_sites_builds_points(site_csv):
    sites = st.load_sites(site_csv)
    assert sites.crs.to_epsg() == 4326
    assert sites["ID"].tolist() == ["s1", "s2", "s3", "GAJVv"]
    assert sites.geometry.iloc[0].x == pytest.approx(-79.40)
    assert sites.geometry.iloc[0].y == pytest.approx(43.70)


def test_missing_site_table_mentions_coordinates(tmp_path):
    with pytest.raises(SystemExit, match="not public"):
        st.load_sites(tmp_path / "site_data.csv")


def test_missing_columns_are_fatal(tmp_path):
    path = tmp_path / "bad.csv"
    path.write_text("ID,Latitude\ns1,43.7\n")
    with pytest.raises(SystemExit, match="Longitude"):
        st.load_sites(path)


def test_duplicate_ids_are_fatal(tmp_path):
    path = tmp_path / "dupes.csv"
    path.write_text("ID,Latitude,Longitude,Habitat_type\ns1,43.7,-79.4,Park\ns1,43.8,-79.5,Roof\n")
    with pytest.raises(SystemExit, match="Duplicate"):
        st.load_sites(path)


def test_surveyed_all_years(site_csv):
    sites = st.load_sites(site_csv)
    assert st.surveyed_all_years(sites, (2011, 2012, 2013)) == ["s1", "s3", "GAJVv"]


def test_surveyed_all_years_needs_year_columns(site_csv):
    sites = st.load_sites(site_csv)
    with pytest.raises(SystemExit, match="Year_2014"):
        st.surveyed_all_years(sites, (2011, 2014))


def test_drop_outside_study_area():
    frame = pd.DataFrame({"site": ["s1", "GAJVv", "s2"]})
    kept = st.drop_outside_study_area(frame, "site", ["GAJVv", "SQWq3"])
    assert kept["site"].tolist() == ["s1", "s2"]


def test_label_habitats_passes_unknown_through(site_csv):
    sites = st.load_sites(site_csv)
    sites.loc[1, "Habitat_type"] = "Cemetery"
    assert st.label_habitats(sites).tolist() == [
        "Home Garden",
        "Cemetery",
        "Public Park",
        "Community Garden",
    ]
