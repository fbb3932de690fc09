"""
Attribution of habitat change to urban and non-urban land use.

ATTRIBUTION methodology:
1. Net change per cell = horizon suitability − baseline suitability
   (masked cells count as 0; cells with no change are masked).
2. New urban signal = horizon − baseline urban probability, on change
   cells only.
3. A cell can gain habitat from non-urban land-use change while losing
   part of it to urban growth (binary habitat 0 → 1 with a fractional
   horizon suitability). Such cells are excluded from the split and
   counted entirely as non-urban net gain.
4. On the remaining change cells the urban proportion of change is
       1 − (|change| − new_urban)
   and
       urban area      = cell area × change × urban proportion
       non-urban area  = cell area × change × (1 − urban proportion)
   so the two always add up to the cell's net area change.
5. Urban area is summed over the species' bounding region, and over each
   country and urban cluster that holds baseline habitat. Non-urban area
   is grouped by the driver's horizon land-cover code, using the
   reconciled land cover that was NOT pasture/secondary reclassified.
6. Proportional metrics divide by the baseline habitat area and are
   undefined (None) when it is zero.
"""

from dataclasses import dataclass

import numpy as np

from hsr_urban import config
from hsr_urban.formulas import landcover_label
from hsr_urban.grid import fill, frozen, mask_where, pixel_area, valid
from hsr_urban.logging_config import get_pipeline_logger
from hsr_urban.pipeline_types import HSRResult
from hsr_urban.zonal import grouped_sum, reduce_region_sum, zonal_sums

log = get_pipeline_logger(__name__)

ZERO_BASELINE_AREA = "zero_baseline_area"


@dataclass(frozen=True, eq=False)
class AttributionLayers:
    """Per-cell change decomposition for one species."""

    change: np.ndarray
    new_urban: np.ndarray
    excluded: np.ndarray  # True = net-gain / urban-loss cell
    urban_proportion: np.ndarray
    urban_area: np.ndarray
    non_urban_area: np.ndarray


def net_gain_urban_loss_mask(suitability):
    """Cells that gain binary habitat but keep only a fraction of it.

    A cell is flagged when it is not binary habitat at baseline (masked or
    0; the binary raster is not elevation-masked), is binary habitat at
    the horizon, and its horizon suitability is strictly between 0 and 1.
    The suitability raster is elevation-masked, so cells outside the
    elevation band are never flagged. Cells where any of these layers is
    masked are not flagged.
    """
    with np.errstate(invalid="ignore"):
        return (
            (fill(suitability.binary_baseline, 0.0) == 0)
            & (suitability.binary_horizon == 1)
            & (suitability.horizon > 0)
            & (suitability.horizon < 1)
        )


def change_layers(suitability, urban_baseline, urban_horizon, cell_area):
    """Decompose net habitat change into urban and non-urban area per cell.

    Parameters
    ----------
    suitability : HabitatSuitability
    urban_baseline, urban_horizon : np.ndarray
        Urban-growth probability grids (NaN treated as 0).
    cell_area : np.ndarray
        Cell areas in m².

    Returns
    -------
    AttributionLayers
    """
    raw = fill(suitability.horizon) - fill(suitability.baseline)
    change = mask_where(raw, raw == 0)
    changed = valid(change)

    new_urban = np.where(
        changed,
        np.nan_to_num(urban_horizon, nan=0.0) - np.nan_to_num(urban_baseline, nan=0.0),
        np.nan,
    )
    excluded = net_gain_urban_loss_mask(suitability)

    urban_proportion = np.where(changed & ~excluded,
                                1.0 - (np.abs(change) - new_urban), np.nan)
    urban_area = cell_area * change * urban_proportion
    non_urban_area = cell_area * change * (1.0 - fill(urban_proportion, 0.0))

    return AttributionLayers(
        change=frozen(change),
        new_urban=frozen(new_urban),
        excluded=frozen(excluded),
        urban_proportion=frozen(urban_proportion),
        urban_area=frozen(urban_area),
        non_urban_area=frozen(non_urban_area),
    )


def presence_in_polygons(suitability, spec, polygons, settings, label):
    """Boolean per polygon: at least one non-zero baseline suitability cell."""
    baseline = mask_where(suitability.baseline, suitability.baseline == 0)
    sums = zonal_sums(baseline, spec, polygons, settings.max_cells,
                      settings.best_effort, label=f"{label} presence")
    return np.array([s.count > 0 for s in sums], dtype=bool)


def urban_change_by_polygon(layers, suitability, spec, polygons, settings,
                            label):
    """Urban-attributable area change in each polygon holding baseline habitat.

    Polygons without baseline habitat are omitted rather than reported
    as zero.

    Returns
    -------
    tuple[gpd.GeoDataFrame, np.ndarray, bool]
        The present polygons, their urban area change, approximation flag.
    """
    if polygons is None or len(polygons) == 0:
        return polygons, np.array([], dtype="float64"), False

    present = presence_in_polygons(suitability, spec, polygons, settings, label)
    subset = polygons[present]
    sums = zonal_sums(layers.urban_area, spec, subset, settings.max_cells,
                      settings.best_effort, label=label)
    values = np.array([s.value for s in sums], dtype="float64")
    approximate = any(s.approximate for s in sums)
    return subset, values, approximate


def driver_breakdown(layers, drivers_horizon, spec, region, settings, label):
    """Non-urban area change grouped by horizon land-cover code.

    Returns
    -------
    tuple[list[dict], bool]
        ``[{"landcover_code", "label", "non_urban_change_area"}, ...]``
        by ascending code, and the approximation flag.
    """
    values = mask_where(layers.non_urban_area, layers.non_urban_area == 0)
    sums, approximate = grouped_sum(values, drivers_horizon, spec, region,
                                    max_cells=settings.max_cells,
                                    best_effort=settings.best_effort,
                                    label=label)
    rows = [
        {"landcover_code": int(code), "label": landcover_label(int(code)),
         "non_urban_change_area": float(area)}
        for code, area in sums.items()
    ]
    return rows, approximate


def proportional_change(urban_change_area, baseline_area, horizon_area):
    """(urban proportion, total proportion, undefined reason) of baseline area."""
    if baseline_area == 0:
        return None, None, ZERO_BASELINE_AREA
    return (
        urban_change_area / baseline_area,
        (horizon_area - baseline_area) / baseline_area,
        None,
    )


def attribute_change(suitability, drivers_landcover, urban_baseline,
                     urban_horizon, countries, clusters, scenario="",
                     settings=None, cell_area=None):
    """Build the result record for one species.

    Parameters
    ----------
    suitability : HabitatSuitability
    drivers_landcover : LandCoverStack
        Reconciled land cover without pasture/secondary reclassification.
    urban_baseline, urban_horizon : np.ndarray
        Urban-growth probability grids.
    countries : gpd.GeoDataFrame
        Country polygons with config.COUNTRY_NAME_FIELD.
    clusters : gpd.GeoDataFrame
        Output of clusters.extract_clusters().
    scenario : str
    settings : AssessmentSettings, optional
    cell_area : np.ndarray, optional

    Returns
    -------
    HSRResult
    """
    if settings is None:
        settings = config.AssessmentSettings()
    spec = drivers_landcover.spec
    spec.check(suitability.baseline, urban_baseline, urban_horizon)
    if cell_area is None:
        cell_area = pixel_area(spec)

    species = suitability.species
    layers = change_layers(suitability, urban_baseline, urban_horizon, cell_area)

    urban_total = reduce_region_sum(
        mask_where(layers.urban_area, layers.urban_area == 0), spec,
        suitability.region, settings.max_cells, settings.best_effort,
        label=f"{species.name} urban change",
    )

    country_subset, country_values, country_approx = urban_change_by_polygon(
        layers, suitability, spec, countries, settings,
        label=f"{species.name} country")
    by_country = []
    if country_subset is not None:
        for name, value in zip(country_subset[config.COUNTRY_NAME_FIELD],
                               country_values):
            by_country.append({"country": str(name),
                               "urban_change_area": float(value)})

    cluster_subset, cluster_values, cluster_approx = urban_change_by_polygon(
        layers, suitability, spec, clusters, settings,
        label=f"{species.name} cluster")
    by_cluster = []
    if cluster_subset is not None:
        for row, value in zip(cluster_subset.itertuples(index=False),
                              cluster_values):
            by_cluster.append({
                "cluster_id": int(row.cluster_id),
                "cities": row.cities,
                "city_ids": row.city_ids,
                "country_of_largest_city": row.country_of_largest_city,
                "urban_change_area": float(value),
            })

    drivers, drivers_approx = driver_breakdown(
        layers, drivers_landcover.horizon, spec, suitability.region, settings,
        label=f"{species.name} drivers")

    prop_urban, prop_all, undefined = proportional_change(
        urban_total.value, suitability.baseline_area, suitability.horizon_area)
    if undefined:
        log.warning("%s: baseline habitat area is zero; proportional change "
                    "is undefined", species.name)

    return HSRResult(
        species=species.name,
        taxon=species.taxon,
        scenario=scenario,
        habitat_preferences=list(species.habitat_preferences),
        landcover_codes=list(suitability.landcover_codes),
        strategy=suitability.strategy,
        baseline_area=suitability.baseline_area,
        horizon_area=suitability.horizon_area,
        proportion_urban_change=prop_urban,
        proportion_total_change=prop_all,
        urban_change_area=urban_total.value,
        urban_change_by_country=by_country,
        urban_change_by_cluster=by_cluster,
        drivers=drivers,
        used_global_extent=suitability.used_global_extent,
        approximate=any([suitability.approximate, urban_total.approximate,
                         country_approx, cluster_approx, drivers_approx]),
        undefined_reason=undefined,
    )
