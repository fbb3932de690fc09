"""
Step executor for scenario preparation and species assessment.

run_step() times a work function, turns any exception into an error
StepResult so one bad species or scenario is recorded rather than
aborting the batch, and attaches the validation warnings raised against
the step's output.
"""

import traceback
from datetime import datetime, timezone
from typing import Callable, TypeVar

from hsr_urban.errors import HSRError
from hsr_urban.logging_config import StepTimer, get_pipeline_logger, log_step_summary
from hsr_urban.pipeline_types import StepResult, StepStatus

T = TypeVar("T")

log = get_pipeline_logger(__name__)

# Input and configuration problems; anything else is logged as unexpected.
KNOWN_FAILURES = (HSRError, FileNotFoundError, ValueError, KeyError)


def run_step(
    step_name: str,
    fn: Callable[..., T],
    *args,
    input_summary: dict | None = None,
    output_summary_fn: Callable[[T], dict] | None = None,
    warnings_fn: Callable[[T], list] | None = None,
    **kwargs,
) -> tuple[StepResult, T | None]:
    """Run ``fn(*args, **kwargs)`` as a named step.

    Parameters
    ----------
    step_name : str
        Stored in the StepResult, e.g. ``assess_<species>``.
    input_summary : dict, optional
        Scenario / species metadata recorded with the result.
    output_summary_fn : callable, optional
        Summarises the return value; skipped when *fn* fails or returns None.
    warnings_fn : callable, optional
        Returns validation messages for the return value; they are stored
        in ``StepResult.warnings`` and logged. A step with warnings still
        succeeds.

    Returns
    -------
    tuple[StepResult, T | None]
        The data is None when the step failed.
    """
    input_summary = input_summary or {}
    data = None
    error_tb = None

    with StepTimer() as timer:
        try:
            data = fn(*args, **kwargs)
        except KNOWN_FAILURES as exc:
            error_tb = traceback.format_exc()
            log.error("%s failed: %s", step_name, exc, exc_info=True)
        except Exception:
            error_tb = traceback.format_exc()
            log.error("%s failed unexpectedly", step_name, exc_info=True)

    completed_at = datetime.now(timezone.utc).isoformat()

    if error_tb:
        log_step_summary(log, step_name, StepStatus.ERROR.value,
                         input_summary=input_summary,
                         timing_seconds=timer.elapsed)
        return StepResult(
            step_name=step_name,
            status=StepStatus.ERROR.value,
            input_summary=input_summary,
            error=error_tb,
            timing_seconds=timer.elapsed,
            completed_at=completed_at,
        ), None

    out_summary = {}
    warnings_list = []
    if data is not None:
        if output_summary_fn is not None:
            out_summary = output_summary_fn(data)
        if warnings_fn is not None:
            warnings_list = list(warnings_fn(data))
    for w in warnings_list:
        log.warning(w)

    log_step_summary(log, step_name, StepStatus.SUCCESS.value,
                     input_summary=input_summary,
                     output_summary=out_summary,
                     timing_seconds=timer.elapsed,
                     warnings_list=warnings_list)
    return StepResult(
        step_name=step_name,
        status=StepStatus.SUCCESS.value,
        input_summary=input_summary,
        output_summary=out_summary,
        timing_seconds=timer.elapsed,
        warnings=warnings_list,
        completed_at=completed_at,
    ), data
