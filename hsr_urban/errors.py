"""
Exception types raised by the HSR analysis.

Recoverable conditions (degenerate range geometry, zero baseline area)
are not exceptions: they are flagged on the result record instead.
"""


class HSRError(Exception):
    """Base class for analysis errors."""


class GridMismatchError(HSRError, ValueError):
    """Two grids that must be co-registered are not."""


class SpeciesConfigError(HSRError, ValueError):
    """A species record cannot be assessed as configured."""


class ReductionCeilingExceeded(HSRError):
    """A zonal reduction would touch more cells than allowed."""

    def __init__(self, cells, max_cells, label=None):
        self.cells = cells
        self.max_cells = max_cells
        self.label = label
        where = f" for {label}" if label else ""
        super().__init__(
            f"Reduction{where} touches {cells:,} cells, "
            f"above the ceiling of {max_cells:,}"
        )

    def __reduce__(self):
        return (type(self), (self.cells, self.max_cells, self.label))
