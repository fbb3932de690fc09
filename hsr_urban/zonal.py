"""
Zonal reductions over co-registered grids.

Three reductions are needed by the attribution engine:

- a plain sum over a rectangular region (species bounding region);
- one sum per polygon (countries, urban clusters), computed with
  rasterstats on the in-memory array and the grid's affine transform;
- a grouped sum keyed by a categorical grid (driver land-cover codes).

Every reduction first counts the cells it would touch. Above the
configured ceiling it raises ReductionCeilingExceeded, unless best-effort
mode is enabled: the grid is then decimated by the smallest stride that
fits, each sampled cell stands for stride² cells, and the result is
flagged as approximate.
"""

import math
from dataclasses import dataclass

import numpy as np
import pandas as pd
from rasterio.transform import Affine
from rasterstats import zonal_stats

from hsr_urban import config
from hsr_urban.errors import ReductionCeilingExceeded
from hsr_urban.grid import bounds_window, to_grid_crs
from hsr_urban.logging_config import get_pipeline_logger

log = get_pipeline_logger(__name__)


@dataclass(frozen=True)
class ZonalSum:
    """Result of one reduction."""

    value: float
    cells: int  # cells inside the reduction window
    count: int  # unmasked cells that contributed
    approximate: bool = False


def decimation_stride(height, width, max_cells=None, best_effort=None, label=None):
    """Stride needed to keep a height x width window under the ceiling.

    Returns 1 when the window fits. Raises ReductionCeilingExceeded when
    it does not and best-effort mode is off.
    """
    if max_cells is None:
        max_cells = config.MAX_CELLS
    if best_effort is None:
        best_effort = config.BEST_EFFORT

    n_cells = height * width
    if n_cells <= max_cells:
        return 1
    if not best_effort:
        raise ReductionCeilingExceeded(n_cells, max_cells, label)

    stride = max(2, math.ceil(math.sqrt(n_cells / max_cells)))
    while math.ceil(height / stride) * math.ceil(width / stride) > max_cells:
        stride += 1
    log.warning("Best-effort reduction%s: %d cells above ceiling %d, stride %d",
                f" for {label}" if label else "", n_cells, max_cells, stride)
    return stride


def _decimate(values, stride):
    """Sample every stride-th cell and weight it by stride²."""
    if stride == 1:
        return values
    return values[::stride, ::stride] * float(stride * stride)


def reduce_region_sum(values, spec, region, max_cells=None, best_effort=None,
                      label=None):
    """Sum of unmasked cells of values within region.

    Parameters
    ----------
    values : np.ndarray
        Continuous grid (NaN = masked).
    spec : GridSpec
    region : Region
    max_cells : int, optional
    best_effort : bool, optional
    label : str, optional
        Name used in log messages and errors.

    Returns
    -------
    ZonalSum
    """
    spec.check(values)
    sub = values[region.index]
    stride = decimation_stride(sub.shape[0], sub.shape[1], max_cells,
                               best_effort, label)
    sub = _decimate(sub, stride)
    finite = ~np.isnan(sub)
    return ZonalSum(
        value=float(np.sum(sub[finite], dtype="float64")),
        cells=region.n_cells,
        count=int(finite.sum()),
        approximate=stride > 1,
    )


def _stats_for(geoms, values, transform):
    return zonal_stats(
        geoms, values,
        affine=transform,
        stats=["sum", "count"],
        nodata=np.nan,
        all_touched=False,
    )


def zonal_sums(values, spec, polygons, max_cells=None, best_effort=None,
               label="zone"):
    """Sum of values inside each polygon (cell-centre inclusion).

    ZONAL REDUCTION methodology:
    Cells are assigned to a polygon when their centre falls inside it
    (all_touched=False), so polygons that partition the grid never count
    a cell twice. Polygons within the cell ceiling are reduced in a single
    rasterstats pass; polygons above it are reduced one at a time on a
    decimated grid when best-effort mode allows it.

    Parameters
    ----------
    values : np.ndarray
        Continuous grid (NaN = masked).
    spec : GridSpec
    polygons : gpd.GeoDataFrame
        Reprojected to the grid CRS when needed.
    label : str
        Prefix for per-polygon log and error labels.

    Returns
    -------
    list[ZonalSum]
        One entry per polygon, in input order.
    """
    spec.check(values)
    if len(polygons) == 0:
        return []
    polygons = to_grid_crs(polygons, spec)

    values = np.asarray(values, dtype="float64")
    results = [None] * len(polygons)
    direct = []
    for i, geom in enumerate(polygons.geometry):
        window = bounds_window(spec, geom.bounds)
        height = window.rows.stop - window.rows.start
        width = window.cols.stop - window.cols.start
        stride = decimation_stride(height, width, max_cells, best_effort,
                                   f"{label} {i}")
        if stride == 1:
            direct.append(i)
            continue
        coarse = _decimate(values, stride)
        coarse_transform = spec.transform * Affine.scale(stride)
        stats = _stats_for([geom], coarse, coarse_transform)[0]
        results[i] = ZonalSum(
            value=float(stats["sum"] or 0.0),
            cells=window.n_cells,
            count=int(stats["count"] or 0),
            approximate=True,
        )

    if direct:
        geoms = [polygons.geometry.iloc[i] for i in direct]
        for i, stats in zip(direct, _stats_for(geoms, values, spec.transform)):
            window = bounds_window(spec, polygons.geometry.iloc[i].bounds)
            results[i] = ZonalSum(
                value=float(stats["sum"] or 0.0),
                cells=window.n_cells,
                count=int(stats["count"] or 0),
            )
    return results


def grouped_sum(values, groups, spec, region, nodata=None, max_cells=None,
                best_effort=None, label=None):
    """Sum of values per group code within region.

    Cells where values are masked or groups hold the nodata code are
    ignored. Groups are returned in ascending code order, which fixes the
    ordering of the breakdown between runs.

    Returns
    -------
    tuple[pd.Series, bool]
        Sums indexed by integer group code, and the approximation flag.
    """
    if nodata is None:
        nodata = config.NODATA_CODE
    spec.check(values, groups)
    sub_v = values[region.index]
    sub_g = groups[region.index]
    stride = decimation_stride(sub_v.shape[0], sub_v.shape[1], max_cells,
                               best_effort, label)
    sub_v = _decimate(sub_v, stride)
    sub_g = sub_g[::stride, ::stride]

    keep = ~np.isnan(sub_v) & (sub_g != nodata)
    sums = (
        pd.Series(sub_v[keep], dtype="float64")
        .groupby(sub_g[keep].astype("int64"))
        .sum()
        .sort_index()
    )
    sums.index.name = "landcover_code"
    return sums, stride > 1
