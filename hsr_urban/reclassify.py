"""
Temporal reclassification of pasture and secondary vegetation.

Species habitat preferences are recorded against natural land-cover and
cropland categories; the land-use model also emits low-intensity pasture
and secondary vegetation, whose underlying state depends on what the
cell was before. These are resolved before habitat matching:

Baseline:
  - low-intensity pasture → the reference natural land cover of the cell.

Horizon:
  1. secondary vegetation → the cell's baseline code (land reverts to
     whatever use preceded regrowth);
  2. then low-intensity pasture, by baseline code:
     - natural at baseline → the baseline natural code;
     - low-intensity pasture at baseline → the reference natural land cover;
     - anything else (cropland, urban, high-intensity pasture) → kept as
       low-intensity pasture and matched later through the Croplands
       preference category.

High-intensity pasture is never reclassified. Both pasture rules read the
same reference layer so the two years stay consistent.
"""

import numpy as np

from hsr_urban import config
from hsr_urban.grid import LandCoverStack
from hsr_urban.logging_config import get_pipeline_logger

log = get_pipeline_logger(__name__)


def is_natural(codes):
    """Boolean array: codes within the natural land-cover range."""
    return (codes >= config.NATURAL_CODE_MIN) & (codes < config.NATURAL_CODE_MAX)


def reclassify_baseline(baseline, reference):
    """Replace baseline low-intensity pasture with the reference land cover."""
    pasture = baseline == config.LOW_INTENSITY_PASTURE_CODE
    return np.where(pasture, reference, baseline)


def reclassify_horizon(baseline, horizon, reference):
    """Resolve horizon secondary vegetation, then horizon low-intensity pasture.

    ``baseline`` is the unreclassified baseline band.
    """
    secondary = horizon == config.SECONDARY_VEGETATION_CODE
    regrown = np.where(secondary, baseline, horizon)

    pasture = regrown == config.LOW_INTENSITY_PASTURE_CODE
    was_natural = pasture & is_natural(baseline)
    was_pasture = pasture & (baseline == config.LOW_INTENSITY_PASTURE_CODE)

    out = np.where(was_natural, baseline, regrown)
    return np.where(was_pasture, reference, out)


def reclassify_stack(stack, reference):
    """Reclassify both bands of a land-cover stack.

    Parameters
    ----------
    stack : LandCoverStack
        Unreclassified land cover (baseline, horizon).
    reference : np.ndarray
        Reference natural land cover for the baseline year, co-registered
        with the stack.

    Returns
    -------
    LandCoverStack
        New stack; the input is not modified. Baseline secondary vegetation
        has no earlier state to revert to and is left unchanged in both
        bands.
    """
    stack.spec.check(reference)
    n_secondary = int(np.count_nonzero(
        stack.baseline == config.SECONDARY_VEGETATION_CODE))
    if n_secondary:
        log.warning("Baseline land cover has %d secondary vegetation cells; "
                    "leaving them unreclassified", n_secondary)

    baseline = reclassify_baseline(stack.baseline, reference)
    horizon = reclassify_horizon(stack.baseline, stack.horizon, reference)

    log.debug(
        "Reclassified %d baseline pasture, %d horizon secondary, %d horizon "
        "pasture cells",
        int(np.count_nonzero(stack.baseline == config.LOW_INTENSITY_PASTURE_CODE)),
        int(np.count_nonzero(stack.horizon == config.SECONDARY_VEGETATION_CODE)),
        int(np.count_nonzero(
            (stack.horizon == config.LOW_INTENSITY_PASTURE_CODE)
            & (horizon != config.LOW_INTENSITY_PASTURE_CODE)
        )),
    )
    return LandCoverStack(baseline=baseline, horizon=horizon, spec=stack.spec)
