"""
Tests for GeoTIFF / vector input and suitability output.

Writes small synthetic rasters with rasterio into a temporary directory
and checks that they come back as co-registered grids with the masking
conventions the analysis relies on.
"""

import os

import numpy as np
import pytest
import rasterio

from hsr_urban.errors import GridMismatchError
from hsr_urban.habitat import map_habitat
from hsr_urban.pipeline import prepare_scenario
from hsr_urban.raster_io import (
    SCENARIO_RASTERS,
    load_scenario_inputs,
    load_species,
    read_grid,
    write_suitability,
)
from tests.conftest import CRS, make_cities, make_spec


def _write(path, data, spec, nodata=None):
    with rasterio.open(
        path, "w", driver="GTiff",
        height=data.shape[0], width=data.shape[1], count=1,
        dtype=data.dtype, crs=spec.crs, transform=spec.transform,
        nodata=nodata,
    ) as dst:
        dst.write(data, 1)
    return str(path)


@pytest.fixture
def scenario_files(tmp_path, scenario_inputs, two_country_gdf):
    spec = scenario_inputs.spec
    paths = {}
    for key in SCENARIO_RASTERS:
        data = getattr(scenario_inputs, key)
        if data.dtype.kind == "f":
            data = data.astype("float32")
        paths[key] = _write(tmp_path / f"{key}.tif", data, spec)

    countries = str(tmp_path / "countries.gpkg")
    two_country_gdf.to_file(countries, driver="GPKG")
    cities = str(tmp_path / "cities.gpkg")
    make_cities([("Capital", 1, 1000, "Eastland", 5, 6)]).to_file(cities, driver="GPKG")
    return paths, countries, cities


class TestReadGrid:

    def test_float_nodata_becomes_nan(self, tmp_path):
        spec = make_spec(1, 3)
        data = np.array([[1.0, -9999.0, 0.0]], dtype="float32")
        values, read_spec = read_grid(_write(tmp_path / "f.tif", data, spec, nodata=-9999.0))
        assert np.isnan(values[0, 1])
        assert values[0, 2] == 0.0
        assert read_spec == spec

    def test_integer_nodata_becomes_code_zero(self, tmp_path):
        spec = make_spec(1, 3)
        data = np.array([[50, 255, 2]], dtype="uint8")
        values, _ = read_grid(_write(tmp_path / "i.tif", data, spec, nodata=255))
        assert values.tolist() == [[50, 0, 2]]
        assert values.dtype == np.int32


class TestLoadScenario:

    def test_round_trip_inputs(self, scenario_files, scenario_inputs):
        paths, countries, cities = scenario_files
        inputs = load_scenario_inputs("ssp1", paths, countries, cities)

        assert inputs.spec == scenario_inputs.spec
        np.testing.assert_array_equal(inputs.landcover_horizon,
                                      scenario_inputs.landcover_horizon)
        assert len(inputs.countries) == 2
        assert len(prepare_scenario(inputs).clusters) == 0

    def test_missing_file(self, scenario_files):
        paths, countries, cities = scenario_files
        paths = dict(paths, elevation=os.path.join(os.path.dirname(countries), "nope.tif"))
        with pytest.raises(FileNotFoundError):
            load_scenario_inputs("ssp1", paths, countries, cities)

    def test_missing_key(self, scenario_files):
        paths, countries, cities = scenario_files
        paths = {k: v for k, v in paths.items() if k != "elevation"}
        with pytest.raises(KeyError):
            load_scenario_inputs("ssp1", paths, countries, cities)

    def test_misaligned_raster(self, tmp_path, scenario_files):
        paths, countries, cities = scenario_files
        other = make_spec(5, 5)
        paths = dict(paths, elevation=_write(tmp_path / "small.tif",
                                             np.zeros((5, 5), "float32"), other))
        with pytest.raises(GridMismatchError):
            load_scenario_inputs("ssp1", paths, countries, cities)


class TestSpecies:

    def test_load_species_and_write_suitability(self, tmp_path, scenario_inputs):
        spec = scenario_inputs.spec
        range_data = np.zeros(spec.shape, dtype="float32")
        range_data[0:5, 0:5] = 0.8
        entry = {
            "name": "Oreophasis derbianus",
            "taxon": "birds",
            "habitats": [2],
            "elev_min": 0,
            "elev_max": 3000,
            "range_path": _write(tmp_path / "range.tif", range_data, spec),
        }
        species = load_species(entry, spec)
        assert species.landcover_codes == (50,)
        assert species.range_geometry is not None

        prepared = prepare_scenario(scenario_inputs)
        suitability = map_habitat(species, prepared.landcover.habitat,
                                  prepared.elevation, prepared.urban_horizon)
        out = write_suitability(str(tmp_path / "out" / "hsr.tif"), suitability, spec)

        with rasterio.open(out) as src:
            assert src.count == 2
            assert src.descriptions == ("2015", "2050")
            assert src.tags()["strategy"] == "urban_intolerant"
            assert src.crs == rasterio.crs.CRS.from_user_input(CRS)
            np.testing.assert_allclose(src.read(1), suitability.baseline,
                                       equal_nan=True)
