from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
import pytest

# Ensure we can import from src/ without installing the package
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
sys.path.insert(0, str(SRC))


@pytest.fixture
def write_raster(tmp_path):
    """Factory writing a single-band GeoTIFF; origin is the top-left corner."""
    import rasterio
    from rasterio.transform import from_origin

    def _write(data: np.ndarray, *, origin=(600000.0, 4841000.0), res=10.0, crs="EPSG:32617", nodata=0, name="landcover.tif"):
        path = tmp_path / name
        with rasterio.open(
            path,
            "w",
            driver="GTiff",
            height=data.shape[0],
            width=data.shape[1],
            count=1,
            dtype=data.dtype,
            crs=crs,
            transform=from_origin(origin[0], origin[1], res, res),
            nodata=nodata,
        ) as dst:
            dst.write(data, 1)
        return path

    return _write
