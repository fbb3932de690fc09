"""
Per-species habitat suitability for the baseline and horizon years.

HABITAT SUITABILITY methodology:
1. The species' preference categories are expanded into land-cover codes
   through the shared lookup table (hsr_urban.formulas).
2. In each year, cells whose reconciled land cover is one of those codes
   and that lie inside the species range (range probability > 0) form the
   binary habitat raster (1.0, NaN elsewhere). Elevation is not yet
   applied at this stage.
3. Urban growth is folded in by one of two strategies, chosen once per
   species from its preferences:
   - urban-intolerant species lose the urban probability of each habitat
     cell at the horizon (1 - p);
   - urban-tolerant species gain, at the horizon, in-range cells that
     are not habitat but may become urban, valued at their urban
     probability; zero-valued cells are masked.
4. Both bands are restricted to the elevation band [min, max], inclusive.

Pixel values are therefore the fraction of each cell that is suitable
habitat, in [0, 1]. Areas are the sum of suitability x cell area over the
species' bounding region (the full grid when the range has no usable
geometry).
"""

from dataclasses import dataclass, field

import numpy as np

from hsr_urban import config
from hsr_urban.errors import SpeciesConfigError
from hsr_urban.formulas import HABITAT_PREFERENCE_CATEGORIES, expand_preferences
from hsr_urban.grid import frozen, mask_where, pixel_area, region_for_geometry, valid
from hsr_urban.logging_config import get_pipeline_logger
from hsr_urban.zonal import reduce_region_sum

log = get_pipeline_logger(__name__)


@dataclass(frozen=True, eq=False)
class SpeciesRecord:
    """One species' range, elevation tolerance and habitat preferences."""

    name: str
    taxon: str
    habitat_preferences: tuple
    elevation_min: float
    elevation_max: float
    range_probability: np.ndarray = field(repr=False)
    range_geometry: object = field(default=None, repr=False)

    def __post_init__(self):
        prefs = tuple(int(p) for p in self.habitat_preferences)
        object.__setattr__(self, "habitat_preferences", prefs)
        if self.elevation_min > self.elevation_max:
            raise SpeciesConfigError(
                f"{self.name}: elevation_min {self.elevation_min} > "
                f"elevation_max {self.elevation_max}"
            )
        try:
            codes = expand_preferences(prefs)
        except SpeciesConfigError as exc:
            raise SpeciesConfigError(f"{self.name}: {exc}") from exc
        object.__setattr__(self, "_landcover_codes", codes)
        object.__setattr__(self, "range_probability",
                           frozen(self.range_probability, "float64"))

    @property
    def landcover_codes(self):
        return self._landcover_codes

    @property
    def habitat_categories(self):
        """Names of the preference categories, e.g. ['Croplands']."""
        return [HABITAT_PREFERENCE_CATEGORIES[p] for p in self.habitat_preferences]

    @property
    def urban_tolerant(self):
        return config.URBAN_PREFERENCE_CODE in self.habitat_preferences

    @property
    def in_range(self):
        return np.nan_to_num(self.range_probability, nan=0.0) > 0


class SuitabilityStrategy:
    """How horizon urban growth changes a species' habitat suitability."""

    name = None

    def suitability(self, binary_baseline, binary_horizon, urban_horizon,
                    in_range, elevation_mask):
        """Return (baseline, horizon) suitability grids."""
        raise NotImplementedError


class UrbanIntolerantStrategy(SuitabilityStrategy):
    """Habitat cells lose the probability that they become urban."""

    name = "urban_intolerant"

    def suitability(self, binary_baseline, binary_horizon, urban_horizon,
                    in_range, elevation_mask):
        urban = np.nan_to_num(urban_horizon, nan=0.0)
        horizon = binary_horizon - urban
        outside = ~elevation_mask
        return mask_where(binary_baseline, outside), mask_where(horizon, outside)


class UrbanTolerantStrategy(SuitabilityStrategy):
    """In-range cells that become urban count as habitat, weighted by probability."""

    name = "urban_tolerant"

    def suitability(self, binary_baseline, binary_horizon, urban_horizon,
                    in_range, elevation_mask):
        urban = np.nan_to_num(urban_horizon, nan=0.0)
        horizon = np.where(valid(binary_horizon), binary_horizon, urban)
        horizon = mask_where(horizon, ~in_range)

        outside = ~elevation_mask
        baseline = mask_where(binary_baseline, outside | (binary_baseline == 0))
        horizon = mask_where(horizon, outside | (horizon == 0))
        return baseline, horizon


URBAN_INTOLERANT = UrbanIntolerantStrategy()
URBAN_TOLERANT = UrbanTolerantStrategy()


def strategy_for(species):
    """Pick the suitability strategy from the species' preferences."""
    return URBAN_TOLERANT if species.urban_tolerant else URBAN_INTOLERANT


@dataclass(frozen=True, eq=False)
class HabitatSuitability:
    """Two-band suitability raster and summary areas for one species."""

    species: SpeciesRecord
    baseline: np.ndarray
    horizon: np.ndarray
    binary_baseline: np.ndarray
    binary_horizon: np.ndarray
    elevation_mask: np.ndarray
    landcover_codes: tuple
    strategy: str
    region: object
    baseline_area: float
    horizon_area: float
    approximate: bool = False

    @property
    def used_global_extent(self):
        return self.region.used_global_extent


def binary_habitat(codes, landcover_band, in_range):
    """1.0 where the band matches a suitable code inside the range, NaN elsewhere."""
    match = np.isin(landcover_band, codes) & in_range
    return np.where(match, 1.0, np.nan)


def elevation_band(elevation, elevation_min, elevation_max):
    """Cells within [elevation_min, elevation_max]; NaN elevation is outside."""
    with np.errstate(invalid="ignore"):
        return (elevation >= elevation_min) & (elevation <= elevation_max)


def map_habitat(species, landcover, elevation, urban_horizon, settings=None,
                cell_area=None):
    """Habitat suitability raster and areas for one species.

    Parameters
    ----------
    species : SpeciesRecord
    landcover : LandCoverStack
        Reconciled land cover built from the reclassified stack.
    elevation : np.ndarray
        Elevation grid (NaN = no data).
    urban_horizon : np.ndarray
        Horizon urban-growth probability.
    settings : AssessmentSettings, optional
    cell_area : np.ndarray, optional
        Precomputed pixel_area(spec).

    Returns
    -------
    HabitatSuitability
    """
    if settings is None:
        settings = config.AssessmentSettings()
    spec = landcover.spec
    spec.check(species.range_probability, elevation, urban_horizon)

    codes = species.landcover_codes
    in_range = species.in_range
    binary_b = binary_habitat(codes, landcover.baseline, in_range)
    binary_h = binary_habitat(codes, landcover.horizon, in_range)
    elev = elevation_band(elevation, species.elevation_min, species.elevation_max)

    strategy = strategy_for(species)
    baseline, horizon = strategy.suitability(binary_b, binary_h, urban_horizon,
                                             in_range, elev)

    region = region_for_geometry(spec, species.range_geometry)
    if region.used_global_extent:
        log.warning("%s: no usable range geometry, reducing over the full grid "
                    "(%d cells)", species.name, region.n_cells)

    if cell_area is None:
        cell_area = pixel_area(spec)
    base_sum = reduce_region_sum(baseline * cell_area, spec, region,
                                 settings.max_cells, settings.best_effort,
                                 label=f"{species.name} baseline area")
    hor_sum = reduce_region_sum(horizon * cell_area, spec, region,
                                settings.max_cells, settings.best_effort,
                                label=f"{species.name} horizon area")

    log.debug("%s: %s, %d codes, baseline %.0f m², horizon %.0f m²",
              species.name, strategy.name, len(codes), base_sum.value,
              hor_sum.value)
    return HabitatSuitability(
        species=species,
        baseline=frozen(baseline),
        horizon=frozen(horizon),
        binary_baseline=frozen(binary_b),
        binary_horizon=frozen(binary_h),
        elevation_mask=frozen(elev),
        landcover_codes=codes,
        strategy=strategy.name,
        region=region,
        baseline_area=base_sum.value,
        horizon_area=hor_sum.value,
        approximate=base_sum.approximate or hor_sum.approximate,
    )
