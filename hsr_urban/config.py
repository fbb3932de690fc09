"""
Centralized configuration for the urban / non-urban HSR change analysis.

Thresholds, land-cover codes, reduction limits and scenario definitions
are defined here with short notes on where each value comes from.
Pure lookup tables (habitat preference -> land-cover codes) live in
hsr_urban.formulas; this module holds run-time parameters.
"""

import os
from dataclasses import dataclass

# ─── TEMPORAL PARAMETERS ─────────────────────────────────────────────────
# Land-cover forecasts are produced for a 2015 baseline and a 2050 horizon.
BASELINE_YEAR = 2015
HORIZON_YEAR = 2050
BAND_NAMES = (str(BASELINE_YEAR), str(HORIZON_YEAR))

# ─── LAND-COVER CODES ────────────────────────────────────────────────────
# GLOBIO land-use classes (codes 1-6) layered over the ESA CCI land-cover
# classification, which supplies the natural classes (50-229) and the
# cropland variants (230, 231).
NODATA_CODE = 0
URBAN_CODE = 1
CROPLAND_CODE = 2
HIGH_INTENSITY_PASTURE_CODE = 3
LOW_INTENSITY_PASTURE_CODE = 4
FORESTRY_CODE = 5
SECONDARY_VEGETATION_CODE = 6

# Natural land-cover codes: 50 <= code < 230 (lower bound inclusive).
NATURAL_CODE_MIN = 50
NATURAL_CODE_MAX = 230

# Cells whose baseline urban-presence signal reaches this value are
# urban at baseline regardless of the land-use model.
URBAN_PRESENCE_VALUE = 1.0

# Preference category that marks a species as tolerant of urban land
# (IGBP "Urban and Built-up").
URBAN_PREFERENCE_CODE = 13

# ─── URBAN CLUSTERS ──────────────────────────────────────────────────────
# Clusters are contiguous cells with a 2050 urban probability above 0.25,
# containing at least one populated place and covering at least 400 km².
CLUSTER_PROBABILITY_THRESHOLD = 0.25
CLUSTER_CONNECTIVITY = 8  # 8 = queen adjacency, 4 = rook adjacency
CLUSTER_MIN_AREA_M2 = 400_000_000
CLUSTER_MAX_CITIES = 10

# Populated-places attribute names (Natural Earth 10m populated places).
CITY_NAME_FIELD = "NAME"
CITY_ID_FIELD = "ne_id"
CITY_POPULATION_FIELD = "POP_MAX"
CITY_COUNTRY_FIELD = "ADM0NAME"

# Country attribute name (Natural Earth 50m admin-0 countries).
COUNTRY_NAME_FIELD = "NAME"

# ─── AREA AND REDUCTION PARAMETERS ───────────────────────────────────────
# Mean Earth radius (IUGG) for per-row cell areas on geographic grids.
EARTH_RADIUS_M = 6_371_008.8

# World Cylindrical Equal Area, used for polygon areas when the grid CRS
# is geographic.
EQUAL_AREA_EPSG = 6933

# Maximum number of cells a single reduction may touch.
MAX_CELLS = int(1e12)

# Best-effort reductions decimate the grid instead of failing when the
# ceiling is exceeded; results are then flagged as approximate.
BEST_EFFORT = False

# ─── SCENARIOS ───────────────────────────────────────────────────────────
# Shared Socioeconomic Pathways used for paired land-use / urban forecasts.
SCENARIOS = {
    "ssp1": {"label": "SSP1 - Sustainability"},
    "ssp3": {"label": "SSP3 - Regional rivalry"},
    "ssp5": {"label": "SSP5 - Fossil-fuelled development"},
}

# ─── PARALLELISM ─────────────────────────────────────────────────────────
# Default worker count for species batches (CPU count - 1, at least 1).
DEFAULT_MAX_WORKERS = max(1, (os.cpu_count() or 2) - 1)

# ─── LOGGING ─────────────────────────────────────────────────────────────
LOG_DIR = os.environ.get("HSR_LOG_DIR", os.path.join(os.getcwd(), "logs"))


@dataclass(frozen=True)
class AssessmentSettings:
    """Run-time knobs for per-species reductions."""

    max_cells: int = MAX_CELLS
    best_effort: bool = BEST_EFFORT

    def __post_init__(self):
        if self.max_cells <= 0:
            raise ValueError(f"max_cells must be positive, got {self.max_cells}")
