"""
Pure land-cover constants and lookup functions.

config.py retains run-time parameters; this package holds the fixed
classification tables shared by every species and scenario.
"""

from hsr_urban.formulas.landcover import (
    HABITAT_LOOKUP,
    HABITAT_PREFERENCE_CATEGORIES,
    LAND_USE_CLASSES,
    expand_preferences,
    landcover_label,
)

__all__ = [
    "HABITAT_LOOKUP",
    "HABITAT_PREFERENCE_CATEGORIES",
    "LAND_USE_CLASSES",
    "expand_preferences",
    "landcover_label",
]
