"""
Shared fixtures for HSR change tests.

Provides small synthetic grids on a 1 km UTM raster, country polygons,
populated places and species records, so each test module can verify
the analysis logic against values that can be worked out by hand.
"""

import geopandas as gpd
import numpy as np
import pytest
from rasterio.transform import from_origin
from shapely.geometry import Point, box

from hsr_urban.grid import GridSpec, footprint_geometry
from hsr_urban.habitat import SpeciesRecord
from hsr_urban.pipeline import ScenarioInputs


# ---------------------------------------------------------------------------
# Constants for synthetic test geometry
# ---------------------------------------------------------------------------
# 1 km cells in UTM zone 33N, so every cell covers exactly 1e6 m².
RES = 1000.0
ORIGIN_X, ORIGIN_Y = 500_000.0, 5_000_000.0
CRS = "EPSG:32633"
CELL_AREA = RES * RES

NATURAL = 50  # CCI evergreen broadleaf, matched by preference 2
CROPLAND = 2
URBAN = 1


def make_spec(height=10, width=10):
    return GridSpec(from_origin(ORIGIN_X, ORIGIN_Y, RES, RES), CRS, (height, width))


def cell_center(row, col):
    return ORIGIN_X + (col + 0.5) * RES, ORIGIN_Y - (row + 0.5) * RES


def cell_box(row0, col0, row1, col1):
    """Polygon covering rows [row0, row1) and cols [col0, col1)."""
    return box(ORIGIN_X + col0 * RES, ORIGIN_Y - row1 * RES,
               ORIGIN_X + col1 * RES, ORIGIN_Y - row0 * RES)


def make_species(spec, prefs=(2,), name="Oreophasis derbianus", taxon="birds",
                 elevation=(0.0, 5000.0), range_probability=None,
                 geometry="footprint"):
    """SpeciesRecord with a range covering the whole grid by default."""
    if range_probability is None:
        range_probability = np.ones(spec.shape)
    if geometry == "footprint":
        geometry = footprint_geometry(range_probability, spec)
    return SpeciesRecord(
        name=name,
        taxon=taxon,
        habitat_preferences=tuple(prefs),
        elevation_min=elevation[0],
        elevation_max=elevation[1],
        range_probability=range_probability,
        range_geometry=geometry,
    )


def make_cities(rows, crs=CRS):
    """Populated places from (name, ne_id, population, country, row, col) tuples."""
    return gpd.GeoDataFrame(
        {
            "NAME": [r[0] for r in rows],
            "ne_id": [r[1] for r in rows],
            "POP_MAX": [r[2] for r in rows],
            "ADM0NAME": [r[3] for r in rows],
        },
        geometry=[Point(*cell_center(r[4], r[5])) for r in rows],
        crs=crs,
    )


@pytest.fixture
def spec():
    return make_spec()


@pytest.fixture
def two_country_gdf():
    """'Westland' covers cols 0-4, 'Eastland' cols 5-9 of the 10 x 10 grid."""
    return gpd.GeoDataFrame(
        {"NAME": ["Westland", "Eastland"],
         "geometry": [cell_box(0, 0, 10, 5), cell_box(0, 5, 10, 10)]},
        crs=CRS,
    )


@pytest.fixture
def no_cities():
    return make_cities([])


@pytest.fixture
def scenario_inputs(spec, two_country_gdf, no_cities):
    """A 10 x 10 scenario with hand-checkable change.

    Land cover (natural 50 everywhere unless noted):
      - row 0 is cropland at baseline; (0, 0) regrows to natural at horizon;
      - (2, 0), (2, 1), (2, 2) become cropland at horizon;
      - (7, 7) is low-intensity pasture in both years (reclassified to 50);
      - (8, 8) becomes secondary vegetation at horizon (reverts to 50).
    Urban probability:
      - baseline: (9, 9) = 1 (urban in the dedicated layer only);
      - horizon: (9, 9) = 1, (5, 5) = 0.3, (5, 6) = 1.0, (2, 1) = 0.4,
        (0, 0) = 0.4.
    """
    baseline = np.full(spec.shape, NATURAL, dtype="int32")
    baseline[0, :] = CROPLAND
    baseline[7, 7] = 4
    horizon = baseline.copy()
    horizon[0, 0] = NATURAL
    horizon[2, 0:3] = CROPLAND
    horizon[8, 8] = 6

    reference = np.full(spec.shape, NATURAL, dtype="int32")

    urban_baseline = np.zeros(spec.shape)
    urban_baseline[9, 9] = 1.0
    urban_horizon = urban_baseline.copy()
    urban_horizon[5, 5] = 0.3
    urban_horizon[5, 6] = 1.0
    urban_horizon[2, 1] = 0.4
    urban_horizon[0, 0] = 0.4

    return ScenarioInputs(
        name="ssp1",
        spec=spec,
        landcover_baseline=baseline,
        landcover_horizon=horizon,
        reference_landcover=reference,
        urban_baseline=urban_baseline,
        urban_horizon=urban_horizon,
        elevation=np.full(spec.shape, 100.0),
        countries=two_country_gdf,
        cities=no_cities,
    )
