"""
GeoTIFF and vector adapters for scenario and species inputs.

Only reads co-registered local files into the in-memory grid model and
writes the per-species suitability raster; acquiring and storing the
source datasets is handled elsewhere.
"""

import os

import geopandas as gpd
import numpy as np
import rasterio

from hsr_urban import config
from hsr_urban.grid import GridSpec, footprint_geometry, require_same_grid
from hsr_urban.habitat import SpeciesRecord
from hsr_urban.logging_config import get_pipeline_logger
from hsr_urban.pipeline import ScenarioInputs

log = get_pipeline_logger(__name__)

SCENARIO_RASTERS = (
    "landcover_baseline",
    "landcover_horizon",
    "reference_landcover",
    "urban_baseline",
    "urban_horizon",
    "elevation",
)

# Urban forecasts are unmasked to 0 (no urban) outside their footprint.
_FILL_ZERO = {"urban_baseline", "urban_horizon"}


def read_grid(path, band=1):
    """Read one band into an array plus its GridSpec.

    Float rasters get NaN for nodata; integer rasters get
    config.NODATA_CODE.
    """
    with rasterio.open(path) as src:
        data = src.read(band)
        nodata = src.nodata
        spec = GridSpec(transform=src.transform, crs=src.crs,
                        shape=(src.height, src.width))

    if np.issubdtype(data.dtype, np.floating):
        data = data.astype("float64")
        if nodata is not None and not np.isnan(nodata):
            data[data == nodata] = np.nan
    else:
        data = data.astype("int32")
        if nodata is not None and nodata != config.NODATA_CODE:
            data[data == int(nodata)] = config.NODATA_CODE
    return data, spec


def load_scenario_inputs(name, raster_paths, countries_path, cities_path):
    """Read all rasters and vectors for one scenario.

    Parameters
    ----------
    name : str
        Scenario name, e.g. "ssp1".
    raster_paths : dict
        Paths keyed by SCENARIO_RASTERS.
    countries_path, cities_path : str
        Vector files readable by geopandas.

    Returns
    -------
    ScenarioInputs

    Raises
    ------
    FileNotFoundError
        If a raster or vector path does not exist.
    GridMismatchError
        If the rasters are not co-registered.
    """
    missing = [k for k in SCENARIO_RASTERS if k not in raster_paths]
    if missing:
        raise KeyError(f"Missing raster paths: {missing}")
    for path in list(raster_paths.values()) + [countries_path, cities_path]:
        if not os.path.exists(path):
            raise FileNotFoundError(path)

    arrays, specs = {}, []
    for key in SCENARIO_RASTERS:
        data, spec = read_grid(raster_paths[key])
        if key in _FILL_ZERO:
            data = np.nan_to_num(data, nan=0.0)
        arrays[key] = data
        specs.append(spec)
    spec = require_same_grid(*specs)

    countries = gpd.read_file(countries_path)
    cities = gpd.read_file(cities_path)
    log.info("Loaded scenario %s: grid %s, %d countries, %d cities",
             name, spec.shape, len(countries), len(cities))
    return ScenarioInputs(name=name, spec=spec, countries=countries,
                          cities=cities, **arrays)


def load_species(entry, spec):
    """Build a SpeciesRecord from a configuration entry.

    ``entry`` holds ``name``, ``taxon``, ``habitats`` (preference codes),
    ``elev_min``, ``elev_max`` and ``range_path``. The range geometry is
    the bounding box of the range footprint; a range with no positive
    cells has no geometry and is reduced over the full grid.
    """
    range_probability, range_spec = read_grid(entry["range_path"])
    require_same_grid(spec, range_spec)
    if not np.issubdtype(range_probability.dtype, np.floating):
        range_probability = range_probability.astype("float64")
    return SpeciesRecord(
        name=entry["name"],
        taxon=entry.get("taxon", ""),
        habitat_preferences=tuple(entry["habitats"]),
        elevation_min=float(entry["elev_min"]),
        elevation_max=float(entry["elev_max"]),
        range_probability=range_probability,
        range_geometry=footprint_geometry(range_probability, spec),
    )


def write_suitability(path, suitability, spec):
    """Write the two-band (baseline, horizon) suitability raster as GeoTIFF."""
    meta = {
        "driver": "GTiff",
        "height": spec.shape[0],
        "width": spec.shape[1],
        "count": 2,
        "dtype": "float32",
        "crs": spec.crs,
        "transform": spec.transform,
        "nodata": np.nan,
    }
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with rasterio.open(path, "w", **meta) as dst:
        dst.write(suitability.baseline.astype("float32"), 1)
        dst.write(suitability.horizon.astype("float32"), 2)
        for i, band_name in enumerate(config.BAND_NAMES, start=1):
            dst.set_band_description(i, band_name)
        dst.update_tags(species=suitability.species.name,
                        strategy=suitability.strategy)
    log.info("Saved suitability raster: %s", path)
    return path
