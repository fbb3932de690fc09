"""
Reconciliation of the land-use model with the dedicated urban forecast.

Non-urban habitat change is estimated from the land-use model, while
urban change is estimated separately from the urban-growth forecast. To
avoid counting urban expansion twice, the land-use model is rewritten so
that urban extent is constant between the two years:

- baseline urban = land-use model urban OR dedicated urban layer urban;
- cells urban at baseline stay urban at horizon;
- cells that become urban only in the land-use model revert to their
  baseline value at horizon;
- all other cells keep the land-use model value for their year.

Two variants are produced per scenario: one from the reclassified land
cover (used for habitat matching) and one from the original land cover
(used to name the drivers of non-urban change in their original
semantics).
"""

from dataclasses import dataclass

import numpy as np

from hsr_urban import config
from hsr_urban.grid import LandCoverStack
from hsr_urban.logging_config import get_pipeline_logger

log = get_pipeline_logger(__name__)


def baseline_urban_mask(stack, urban_baseline):
    """Union of land-use model urban cells and dedicated-layer urban cells.

    Cells that are nodata in the baseline band are never urban.
    """
    stack.spec.check(urban_baseline)
    presence = np.nan_to_num(urban_baseline, nan=0.0)
    union = (stack.baseline == config.URBAN_CODE) | (presence >= config.URBAN_PRESENCE_VALUE)
    return union & (stack.baseline != config.NODATA_CODE)


def reconcile_urban(stack, urban_baseline):
    """Merge baseline urban extent and hold it constant to the horizon.

    Parameters
    ----------
    stack : LandCoverStack
        Land cover from the land-use model.
    urban_baseline : np.ndarray
        Baseline urban-presence grid from the urban forecast (masked
        cells are treated as non-urban).

    Returns
    -------
    LandCoverStack
        New stack with urban-extent-consistent bands.
    """
    urban = baseline_urban_mask(stack, urban_baseline)
    baseline = np.where(urban, config.URBAN_CODE, stack.baseline)

    horizon_urban = stack.horizon == config.URBAN_CODE
    newly_urban = ~urban & horizon_urban
    horizon = np.where(newly_urban, stack.baseline, stack.horizon)
    horizon = np.where(urban & (stack.horizon != config.NODATA_CODE),
                       config.URBAN_CODE, horizon)

    log.debug("Urban reconciliation: %d baseline urban cells, %d land-use model "
              "urban gains reverted", int(urban.sum()), int(newly_urban.sum()))
    return LandCoverStack(baseline=baseline, horizon=horizon, spec=stack.spec)


@dataclass(frozen=True, eq=False)
class ReconciledLandCover:
    """Both reconciled variants for one scenario."""

    habitat: LandCoverStack  # from reclassified land cover
    drivers: LandCoverStack  # from original land cover


def reconcile_variants(raw, reclassified, urban_baseline):
    """Reconcile the original and reclassified stacks against the same urban layer."""
    return ReconciledLandCover(
        habitat=reconcile_urban(reclassified, urban_baseline),
        drivers=reconcile_urban(raw, urban_baseline),
    )
