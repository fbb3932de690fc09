"""
In-memory grid primitives shared by every analysis step.

All rasters in an assessment are co-registered numpy arrays described by
one GridSpec (affine transform, CRS, shape). Masking follows two rules:

- continuous grids (probabilities, suitability, areas) are float arrays
  with NaN for masked cells; 0.0 is a real value, never a mask;
- categorical land-cover grids are integer arrays with
  config.NODATA_CODE for masked cells.

Every derived grid is a new read-only array so later steps can compare
against earlier, unmodified inputs.
"""

import math
from dataclasses import dataclass

import numpy as np
from rasterio.crs import CRS

from hsr_urban import config
from hsr_urban.errors import GridMismatchError


@dataclass(frozen=True)
class GridSpec:
    """Georeferencing shared by a set of co-registered grids."""

    transform: object  # affine.Affine
    crs: object
    shape: tuple

    def __post_init__(self):
        object.__setattr__(self, "crs", CRS.from_user_input(self.crs))
        object.__setattr__(self, "shape", tuple(int(n) for n in self.shape))
        if self.transform.b != 0 or self.transform.d != 0:
            raise ValueError("Rotated grids are not supported")

    @property
    def is_geographic(self):
        return bool(self.crs.is_geographic)

    @property
    def n_cells(self):
        return self.shape[0] * self.shape[1]

    @property
    def bounds(self):
        """(left, bottom, right, top) of the full grid."""
        t = self.transform
        height, width = self.shape
        xs = (t.c, t.c + t.a * width)
        ys = (t.f, t.f + t.e * height)
        return min(xs), min(ys), max(xs), max(ys)

    def check(self, *arrays):
        """Raise GridMismatchError unless every array matches this grid's shape."""
        for arr in arrays:
            if arr is None:
                continue
            if tuple(np.shape(arr)) != self.shape:
                raise GridMismatchError(
                    f"Grid shape {np.shape(arr)} does not match {self.shape}"
                )


def require_same_grid(*specs):
    """Raise GridMismatchError unless all specs describe the same grid."""
    first = specs[0]
    for other in specs[1:]:
        if other != first:
            raise GridMismatchError(f"Grids are not co-registered: {first} vs {other}")
    return first


def frozen(arr, dtype=None):
    """Return a read-only copy of arr."""
    out = np.array(arr, dtype=dtype, copy=True)
    out.setflags(write=False)
    return out


def pixel_area(spec):
    """Per-cell area in square metres.

    Projected grids have a constant cell area |a * e| (CRS units are
    assumed to be metres). Geographic grids use the spherical area of
    each latitude band:

        R² · Δλ · |sin φ_top − sin φ_bottom|

    Returns
    -------
    np.ndarray
        float64 array of spec.shape.
    """
    t = spec.transform
    height, width = spec.shape
    if not spec.is_geographic:
        return np.full(spec.shape, abs(t.a * t.e), dtype="float64")

    rows = np.arange(height, dtype="float64")
    top = np.radians(t.f + t.e * rows)
    bottom = np.radians(t.f + t.e * (rows + 1))
    dlon = math.radians(abs(t.a))
    band = config.EARTH_RADIUS_M ** 2 * dlon * np.abs(np.sin(top) - np.sin(bottom))
    return np.repeat(band[:, None], width, axis=1)


@dataclass(frozen=True)
class Region:
    """A rectangular cell window over a grid."""

    rows: slice
    cols: slice
    used_global_extent: bool = False

    @property
    def n_cells(self):
        return (self.rows.stop - self.rows.start) * (self.cols.stop - self.cols.start)

    @property
    def index(self):
        return self.rows, self.cols


def full_extent(spec):
    """Region covering the whole grid, flagged as the global fallback."""
    height, width = spec.shape
    return Region(slice(0, height), slice(0, width), used_global_extent=True)


def bounds_window(spec, bounds):
    """Region of cells overlapping (left, bottom, right, top), clipped to the grid."""
    left, bottom, right, top = bounds
    inv = ~spec.transform
    # Snap to 1e-6 cell so edges on cell boundaries do not spill over.
    c0, r0 = (round(v, 6) for v in inv * (left, top))
    c1, r1 = (round(v, 6) for v in inv * (right, bottom))
    height, width = spec.shape
    row_start = min(max(math.floor(min(r0, r1)), 0), height)
    row_stop = min(max(math.ceil(max(r0, r1)), row_start), height)
    col_start = min(max(math.floor(min(c0, c1)), 0), width)
    col_stop = min(max(math.ceil(max(c0, c1)), col_start), width)
    return Region(slice(row_start, row_stop), slice(col_start, col_stop))


def region_for_geometry(spec, geometry):
    """Bounding region of a geometry, or the full extent when it is unusable.

    A missing, empty, invalid or non-finite geometry is treated as
    unbounded and falls back to the whole grid.
    """
    if geometry is None or geometry.is_empty or not geometry.is_valid:
        return full_extent(spec)
    bounds = geometry.bounds
    if not all(np.isfinite(bounds)):
        return full_extent(spec)
    return bounds_window(spec, bounds)


def fill(arr, value=0.0):
    """Replace masked (NaN) cells with value."""
    return np.where(np.isnan(arr), value, arr)


def mask_where(arr, condition):
    """Mask (set NaN) cells where condition holds."""
    return np.where(condition, np.nan, arr)


def valid(arr):
    """Boolean array of unmasked cells in a continuous grid."""
    return ~np.isnan(arr)


def to_grid_crs(gdf, spec):
    """Reproject a GeoDataFrame to the grid CRS if it is not already in it."""
    if gdf.crs is None or gdf.crs.equals(spec.crs.to_wkt()):
        return gdf
    return gdf.to_crs(spec.crs.to_wkt())


@dataclass(frozen=True, eq=False)
class LandCoverStack:
    """Categorical land cover for the baseline and horizon years."""

    baseline: np.ndarray
    horizon: np.ndarray
    spec: GridSpec

    def __post_init__(self):
        self.spec.check(self.baseline, self.horizon)
        object.__setattr__(self, "baseline", frozen(self.baseline, "int32"))
        object.__setattr__(self, "horizon", frozen(self.horizon, "int32"))


def footprint_geometry(values, spec):
    """Bounding box of the cells with values > 0, or None when there are none."""
    from shapely.geometry import box

    present = np.nan_to_num(values, nan=0.0) > 0
    if not present.any():
        return None
    rows = np.flatnonzero(present.any(axis=1))
    cols = np.flatnonzero(present.any(axis=0))
    t = spec.transform
    x0, y0 = t * (cols[0], rows[0])
    x1, y1 = t * (cols[-1] + 1, rows[-1] + 1)
    return box(min(x0, x1), min(y0, y1), max(x0, x1), max(y0, y1))
