"""
Land-cover codes and the habitat-preference lookup table.

Species habitat preferences are recorded against 16 IGBP-style land-cover
categories. Each category is matched to one or more GLOBIO / CCI
land-cover codes; a species' suitable codes are the union over its
preference categories.

Low-intensity pasture (4) and high-intensity pasture (3) are matched
through the Croplands category (12), as is any low-intensity pasture that
survives reclassification because its baseline was already converted land.
"""

from types import MappingProxyType

# Preference code → category name.
HABITAT_PREFERENCE_CATEGORIES = MappingProxyType({
    1: "Evergreen Needleleaf Forests",
    2: "Evergreen Broadleaf Forests",
    3: "Deciduous Needleleaf Forests",
    4: "Deciduous Broadleaf Forests",
    5: "Mixed Forests",
    6: "Closed Shrublands",
    7: "Open Shrublands",
    8: "Woody Savannas",
    9: "Savannas",
    10: "Grasslands",
    11: "Permanent Wetlands",
    12: "Croplands",
    13: "Urban and Built-up",
    14: "Cropland/Natural Vegetation Mosaics",
    15: "Permanent Snow and Ice",
    16: "Barren",
})

# Preference code → land-cover codes counted as suitable habitat.
HABITAT_LOOKUP = MappingProxyType({
    1: frozenset({70, 71}),
    2: frozenset({50}),
    3: frozenset({80, 81, 82}),
    4: frozenset({60, 61}),
    5: frozenset({90}),
    6: frozenset({120}),
    7: frozenset({100, 110, 120, 121, 122, 130, 150}),
    8: frozenset({70, 80, 71, 60, 100, 72, 121}),
    9: frozenset({80, 62, 120, 70, 60, 100, 110}),
    10: frozenset({110, 120, 130, 140}),
    11: frozenset({160, 170, 180}),
    12: frozenset({2, 230, 231, 3, 4}),
    13: frozenset({1, 190}),
    14: frozenset({2, 230, 231}),
    15: frozenset({220}),
    16: frozenset({151, 152, 153, 200, 201, 202}),
})

# Human-readable names for the land-use codes that act as drivers.
LAND_USE_CLASSES = MappingProxyType({
    1: "Urban",
    2: "Cropland",
    3: "Pasture (high intensity)",
    4: "Pasture (low intensity)",
    5: "Forestry",
    6: "Secondary vegetation",
    230: "Cropland (rainfed)",
    231: "Cropland (irrigated)",
})


def expand_preferences(preferences, lookup=HABITAT_LOOKUP):
    """Expand preference categories into sorted, distinct land-cover codes.

    Parameters
    ----------
    preferences : iterable of int
        Preference category codes (1-16).
    lookup : Mapping[int, frozenset]
        Preference → land-cover code table.

    Returns
    -------
    tuple[int, ...]
        Land-cover codes in ascending order.

    Raises
    ------
    SpeciesConfigError
        If a code is not a known category or nothing matches.
    """
    from hsr_urban.errors import SpeciesConfigError

    codes = set()
    for pref in preferences:
        try:
            codes.update(lookup[int(pref)])
        except KeyError:
            raise SpeciesConfigError(
                f"Unknown habitat preference category: {pref!r}"
            ) from None
    if not codes:
        raise SpeciesConfigError("Habitat preferences match no land-cover codes")
    return tuple(sorted(codes))


def landcover_label(code):
    """Name of a land-cover code for reporting, e.g. 'Cropland' or 'CCI 120'."""
    if code in LAND_USE_CLASSES:
        return LAND_USE_CLASSES[code]
    return f"CCI {code}"
