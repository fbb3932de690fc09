"""
Urban cluster extraction from the horizon urban-growth forecast.

URBAN CLUSTER methodology:
Clusters are contiguous groups of cells whose horizon urban probability
exceeds config.CLUSTER_PROBABILITY_THRESHOLD (0.25). Each connected
component (8-connected by default) becomes one polygon. A cluster is kept
only if it contains at least one populated place and covers at least
config.CLUSTER_MIN_AREA_M2 (400 km²). Clusters are named after the most
populous places they contain (up to ten, comma-joined) and carry the
country of the most populous one.
"""

import geopandas as gpd
import numpy as np
from rasterio.features import shapes
from scipy import ndimage
from shapely.geometry import shape
from shapely.ops import unary_union

from hsr_urban import config
from hsr_urban.grid import to_grid_crs
from hsr_urban.logging_config import get_pipeline_logger

log = get_pipeline_logger(__name__)

CLUSTER_COLUMNS = [
    "cluster_id", "cities", "city_ids", "country_of_largest_city",
    "n_cities", "area", "geometry",
]


def _empty_clusters(spec):
    return gpd.GeoDataFrame(
        {col: [] for col in CLUSTER_COLUMNS if col != "geometry"},
        geometry=[], crs=spec.crs.to_wkt(),
    )


def label_components(mask, connectivity=None):
    """Label connected components of a boolean mask.

    Returns
    -------
    tuple[np.ndarray, int]
        int32 label array (0 = background) and component count.
    """
    if connectivity is None:
        connectivity = config.CLUSTER_CONNECTIVITY
    if connectivity not in (4, 8):
        raise ValueError(f"connectivity must be 4 or 8, got {connectivity}")
    structure = ndimage.generate_binary_structure(2, 2 if connectivity == 8 else 1)
    labels, n = ndimage.label(mask, structure=structure)
    return labels.astype("int32"), int(n)


def polygonize_components(labels, spec, connectivity=None):
    """One polygon per component label, in ascending label order."""
    if connectivity is None:
        connectivity = config.CLUSTER_CONNECTIVITY
    parts = {}
    for geom, value in shapes(labels, mask=labels > 0,
                              connectivity=connectivity,
                              transform=spec.transform):
        parts.setdefault(int(value), []).append(shape(geom))

    ids = sorted(parts)
    geoms = [unary_union(parts[i]) for i in ids]
    return gpd.GeoDataFrame({"cluster_id": ids}, geometry=geoms,
                            crs=spec.crs.to_wkt())


def polygon_areas(gdf):
    """Polygon areas in square metres (equal-area projection for geographic CRS)."""
    if gdf.crs is not None and gdf.crs.is_geographic:
        return gdf.to_crs(epsg=config.EQUAL_AREA_EPSG).area
    return gdf.area


def _format_id(value):
    if isinstance(value, (float, np.floating)) and float(value).is_integer():
        return str(int(value))
    return str(value)


def name_clusters(clusters, cities, max_cities=None):
    """Attach the names, ids and country of the cities inside each cluster.

    Cities are ranked by population (descending), with ties broken by
    name then id so that repeated runs name clusters identically.
    Clusters without any city get n_cities = 0 and empty names.
    """
    if max_cities is None:
        max_cities = config.CLUSTER_MAX_CITIES

    out = clusters.copy()
    out["cities"] = ""
    out["city_ids"] = ""
    out["country_of_largest_city"] = None
    out["n_cities"] = 0
    if len(out) == 0 or len(cities) == 0:
        return out

    points = cities[[config.CITY_NAME_FIELD, config.CITY_ID_FIELD,
                     config.CITY_POPULATION_FIELD, config.CITY_COUNTRY_FIELD,
                     "geometry"]]
    points = points.to_crs(out.crs) if points.crs is not None else points
    joined = gpd.sjoin(points, out[["cluster_id", "geometry"]],
                       how="inner", predicate="intersects")
    joined = joined.sort_values(
        ["cluster_id", config.CITY_POPULATION_FIELD,
         config.CITY_NAME_FIELD, config.CITY_ID_FIELD],
        ascending=[True, False, True, True],
        kind="mergesort",
    )

    by_cluster = out.set_index("cluster_id")
    for cluster_id, group in joined.groupby("cluster_id", sort=True):
        top = group.head(max_cities)
        by_cluster.loc[cluster_id, "cities"] = ",".join(
            str(n) for n in top[config.CITY_NAME_FIELD])
        by_cluster.loc[cluster_id, "city_ids"] = ",".join(
            _format_id(i) for i in top[config.CITY_ID_FIELD])
        by_cluster.loc[cluster_id, "country_of_largest_city"] = (
            top[config.CITY_COUNTRY_FIELD].iloc[0])
        by_cluster.loc[cluster_id, "n_cities"] = len(group)
    return gpd.GeoDataFrame(by_cluster.reset_index(), geometry="geometry",
                            crs=out.crs)


def extract_clusters(urban_horizon, spec, cities, threshold=None,
                     connectivity=None, min_area=None, max_cities=None):
    """Named urban clusters from the horizon urban-growth probability grid.

    Parameters
    ----------
    urban_horizon : np.ndarray
        Horizon urban probability in [0, 1] (NaN treated as 0).
    spec : GridSpec
    cities : gpd.GeoDataFrame
        Populated places with name, id, population and country fields
        (see config.CITY_*_FIELD).
    threshold, connectivity, min_area, max_cities : optional
        Override the config defaults.

    Returns
    -------
    gpd.GeoDataFrame
        Columns CLUSTER_COLUMNS, in the grid CRS, sorted by cluster_id.
    """
    if threshold is None:
        threshold = config.CLUSTER_PROBABILITY_THRESHOLD
    if min_area is None:
        min_area = config.CLUSTER_MIN_AREA_M2
    spec.check(urban_horizon)

    above = np.nan_to_num(urban_horizon, nan=0.0) > threshold
    labels, n = label_components(above, connectivity)
    if n == 0:
        log.info("No cells above urban probability %.2f; no clusters", threshold)
        return _empty_clusters(spec)

    clusters = polygonize_components(labels, spec, connectivity)
    clusters["area"] = polygon_areas(clusters).to_numpy()
    clusters = name_clusters(clusters, to_grid_crs(cities, spec), max_cities)

    has_city = clusters["n_cities"] > 0
    large = clusters["area"] >= min_area
    kept = clusters[has_city & large].sort_values("cluster_id")
    log.info("Urban clusters: %d components, %d without cities, %d below "
             "%.0f m², %d kept", n, int((~has_city).sum()),
             int((has_city & ~large).sum()), min_area, len(kept))
    kept = kept.reset_index(drop=True)
    kept["n_cities"] = kept["n_cities"].astype("int64")
    return gpd.GeoDataFrame(kept[CLUSTER_COLUMNS], geometry="geometry",
                            crs=clusters.crs)
