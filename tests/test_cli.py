#!/usr/bin/env python3

from __future__ import annotations

import pandas as pd

from trapnest.analysis.__main__ import main as analysis_main
from trapnest.community.__main__ import main as community_main
from trapnest.landcover.__main__ import main as landcover_main

SITES = """ID,Latitude,Longitude,Habitat_type,Year_2011,Year_2012,Year_2013
s1,43.70,-79.40,Garden,Y,Y,Y
s2,43.71,-79.41,Roof,Y,Y,Y
s3,43.72,-79.42,Park,Y,N,Y
"""

NESTS = """ID,Year,Lower Species,No. Broodcells
s1,2011,sp_a,3
s1,2012,sp_b,2
s1,2013,sp_c,1
s2,2011,sp_a,4
s2,2012,sp_c,5
s3,2011,sp_b,2
"""

TRAITS = """species,body_length,nest_material
sp_a,6.0,leaf
sp_b,9.0,mud
sp_c,12.0,resin
"""


def test_landcover_dry_run(tmp_path, capsys):
    rc = landcover_main(["--config", str(tmp_path / "none.yaml"), "--dry-run", "extract", "--radii", "100"])
    assert rc == 0
    out = capsys.readouterr().out
    assert "[DRY-RUN] Would extract land cover" in out
    assert "Radii: 100" in out


def test_analysis_dry_run(tmp_path, capsys):
    rc = analysis_main(["--config", str(tmp_path / "none.yaml"), "--dry-run", "regress", "--radius", "500"])
    assert rc == 0
    assert "land_use_500.csv" in capsys.readouterr().out


def test_community_summarize_and_ses(tmp_path):
    (tmp_path / "sites.csv").write_text(SITES)
    (tmp_path / "nests.csv").write_text(NESTS)
    (tmp_path / "traits.csv").write_text(TRAITS)
    comm_path = tmp_path / "comm.csv"
    ses_path = tmp_path / "ses.csv"
    cfg = str(tmp_path / "none.yaml")

    community_main([
        "--config", cfg, "summarize",
        "--nests", str(tmp_path / "nests.csv"),
        "--sites", str(tmp_path / "sites.csv"),
        "--out", str(comm_path),
    ])
    comm = pd.read_csv(comm_path, index_col=0)
    assert comm.index.tolist() == ["s1", "s2"]
    assert comm.loc["s2", "sp_b"] == 0

    community_main([
        "--config", cfg, "ses-mfd",
        "--comm", str(comm_path),
        "--traits", str(tmp_path / "traits.csv"),
        "--out", str(ses_path),
        "--runs", "20", "--seed", "5",
    ])
    ses = pd.read_csv(ses_path)
    assert ses["site_id"].tolist() == ["s1", "s2"]
    assert (ses["runs"] == 20).all()
