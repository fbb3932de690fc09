"""
Scenario preparation and per-species assessment.

Ordering within a scenario is fixed: reclassification, then urban
reconciliation (both variants), then cluster extraction, then per-species
habitat mapping and attribution. Scenario-level products are computed once
and shared read-only by every species, so species can be assessed in any
order or in parallel.

Usage:
    prepared = prepare_scenario(inputs)
    batch = run_batch(prepared, species_list)
    batch.summary_frame()
"""

import os
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass, field

import geopandas as gpd
import numpy as np

from hsr_urban import config
from hsr_urban.attribution import attribute_change
from hsr_urban.clusters import extract_clusters
from hsr_urban.grid import LandCoverStack, frozen, pixel_area, to_grid_crs
from hsr_urban.habitat import map_habitat
from hsr_urban.logging_config import StepTimer, get_pipeline_logger
from hsr_urban.pipeline_types import BatchResult, StepResult, StepStatus
from hsr_urban.reclassify import reclassify_stack
from hsr_urban.reconcile import reconcile_variants
from hsr_urban.schemas import ClusterSchema, validate_result, validate_schema
from hsr_urban.step_runner import run_step

log = get_pipeline_logger(__name__)


@dataclass(frozen=True, eq=False)
class ScenarioInputs:
    """Co-registered inputs for one land-use / urban scenario pair."""

    name: str
    spec: object
    landcover_baseline: np.ndarray = field(repr=False)
    landcover_horizon: np.ndarray = field(repr=False)
    reference_landcover: np.ndarray = field(repr=False)
    urban_baseline: np.ndarray = field(repr=False)
    urban_horizon: np.ndarray = field(repr=False)
    elevation: np.ndarray = field(repr=False)
    countries: gpd.GeoDataFrame = field(repr=False)
    cities: gpd.GeoDataFrame = field(repr=False)

    def __post_init__(self):
        self.spec.check(self.landcover_baseline, self.landcover_horizon,
                        self.reference_landcover, self.urban_baseline,
                        self.urban_horizon, self.elevation)


@dataclass(frozen=True, eq=False)
class PreparedScenario:
    """Scenario-level products shared by every species."""

    name: str
    spec: object
    raw: LandCoverStack = field(repr=False)
    reclassified: LandCoverStack = field(repr=False)
    landcover: object = field(repr=False)  # ReconciledLandCover
    urban_baseline: np.ndarray = field(repr=False)
    urban_horizon: np.ndarray = field(repr=False)
    elevation: np.ndarray = field(repr=False)
    countries: gpd.GeoDataFrame = field(repr=False)
    clusters: gpd.GeoDataFrame = field(repr=False)
    cell_area: np.ndarray = field(repr=False)
    warnings: tuple = ()


def prepare_scenario(inputs):
    """Reclassify, reconcile and extract clusters for one scenario.

    Returns
    -------
    PreparedScenario
        ``warnings`` holds the cluster table's schema violations.

    Raises
    ------
    ValueError
        If the scenario is not one of config.SCENARIOS.
    """
    if inputs.name not in config.SCENARIOS:
        raise ValueError(
            f"Unknown scenario {inputs.name!r}; expected one of "
            f"{sorted(config.SCENARIOS)}"
        )
    spec = inputs.spec
    raw = LandCoverStack(inputs.landcover_baseline, inputs.landcover_horizon, spec)
    reclassified = reclassify_stack(raw, inputs.reference_landcover)
    landcover = reconcile_variants(raw, reclassified, inputs.urban_baseline)
    clusters = extract_clusters(inputs.urban_horizon, spec, inputs.cities)

    warnings_list = validate_schema(clusters.drop(columns="geometry"),
                                    ClusterSchema, f"clusters_{inputs.name}")
    for w in warnings_list:
        log.warning(w)

    log.info("Prepared scenario %s (%s): grid %s, %d countries, %d urban clusters",
             inputs.name, config.SCENARIOS[inputs.name]["label"], spec.shape,
             len(inputs.countries), len(clusters))
    return PreparedScenario(
        name=inputs.name,
        spec=spec,
        raw=raw,
        reclassified=reclassified,
        landcover=landcover,
        urban_baseline=frozen(inputs.urban_baseline, "float64"),
        urban_horizon=frozen(inputs.urban_horizon, "float64"),
        elevation=frozen(inputs.elevation, "float64"),
        countries=to_grid_crs(inputs.countries, spec),
        clusters=clusters,
        cell_area=frozen(pixel_area(spec)),
        warnings=tuple(warnings_list),
    )


def assess_species(prepared, species, settings=None):
    """Habitat suitability and change attribution for one species.

    Returns
    -------
    HSRResult
    """
    if settings is None:
        settings = config.AssessmentSettings()
    suitability = map_habitat(
        species, prepared.landcover.habitat, prepared.elevation,
        prepared.urban_horizon, settings=settings,
        cell_area=prepared.cell_area,
    )
    return attribute_change(
        suitability, prepared.landcover.drivers,
        prepared.urban_baseline, prepared.urban_horizon,
        prepared.countries, prepared.clusters,
        scenario=prepared.name, settings=settings,
        cell_area=prepared.cell_area,
    )


def _result_summary(result):
    return {
        "baseline_area": result.baseline_area,
        "horizon_area": result.horizon_area,
        "urban_change_area": result.urban_change_area,
        "proportion_total_change": result.proportion_total_change,
    }


def _assess_step(prepared, species, settings):
    return run_step(
        f"assess_{species.name}",
        assess_species, prepared, species, settings,
        input_summary={"scenario": prepared.name, "species": species.name,
                       "taxon": species.taxon,
                       "habitats": species.habitat_categories},
        output_summary_fn=_result_summary,
        warnings_fn=validate_result,
    )


# Scenario products held by each worker process, set once by the
# executor initializer instead of being pickled with every task.
_worker_state = {}


def _init_worker(prepared, settings):
    _worker_state["prepared"] = prepared
    _worker_state["settings"] = settings


def _assess_in_worker(species):
    return _assess_step(_worker_state["prepared"], species,
                        _worker_state["settings"])


def run_batch(prepared, species_list, settings=None, max_workers=1):
    """Assess every species, isolating failures per species.

    Parameters
    ----------
    prepared : PreparedScenario
    species_list : list[SpeciesRecord]
    settings : AssessmentSettings, optional
    max_workers : int
        1 (default) runs serially; more uses a process pool. None uses
        HSR_MAX_WORKERS or config.DEFAULT_MAX_WORKERS.

    Returns
    -------
    BatchResult
        Results and step results in input order; failed species appear
        only as error step results.
    """
    if settings is None:
        settings = config.AssessmentSettings()
    if max_workers is None:
        max_workers = default_workers()

    batch = BatchResult(scenario=prepared.name)
    outcomes = [None] * len(species_list)

    log.info("Assessing %d species under %s (%d workers)",
             len(species_list), prepared.name, max_workers)

    with StepTimer() as timer:
        if max_workers <= 1 or len(species_list) <= 1:
            for i, species in enumerate(species_list):
                outcomes[i] = _assess_step(prepared, species, settings)
        else:
            with ProcessPoolExecutor(max_workers=max_workers,
                                     initializer=_init_worker,
                                     initargs=(prepared, settings)) as executor:
                futures = {executor.submit(_assess_in_worker, sp): i
                           for i, sp in enumerate(species_list)}
                try:
                    for future in as_completed(futures):
                        i = futures[future]
                        try:
                            outcomes[i] = future.result()
                        except Exception as exc:
                            # Worker died or the outcome could not be returned.
                            name = species_list[i].name
                            log.error("Worker failed for %s: %s", name, exc)
                            outcomes[i] = (StepResult(
                                step_name=f"assess_{name}",
                                status=StepStatus.ERROR.value,
                                input_summary={"scenario": prepared.name,
                                               "species": name},
                                error=repr(exc),
                            ), None)
                except KeyboardInterrupt:
                    executor.shutdown(wait=False, cancel_futures=True)
                    raise

    for step_result, result in outcomes:
        batch.step_results.append(step_result)
        if result is not None:
            batch.results.append(result)
    batch.total_time_seconds = timer.elapsed

    log.info("Scenario %s: %d/%d species assessed (%.1fs)", prepared.name,
             len(batch.results), len(species_list), timer.elapsed)
    return batch


def run_scenarios(inputs_list, species_list, settings=None, max_workers=1):
    """Prepare each scenario independently and assess every species in it.

    A scenario whose preparation fails (including a name outside
    config.SCENARIOS) yields a BatchResult holding only the failed
    preparation step.

    Returns
    -------
    list[BatchResult]
    """
    batches = []
    for inputs in inputs_list:
        step, prepared = run_step(
            f"prepare_{inputs.name}", prepare_scenario, inputs,
            input_summary={"scenario": inputs.name, "shape": list(inputs.spec.shape)},
            output_summary_fn=lambda p: {"clusters": len(p.clusters)},
        )
        if prepared is None:
            batches.append(BatchResult(scenario=inputs.name, step_results=[step]))
            continue
        step.warnings = list(prepared.warnings)
        batch = run_batch(prepared, species_list, settings, max_workers)
        batch.step_results.insert(0, step)
        batches.append(batch)
    return batches


def default_workers():
    """Worker count from HSR_MAX_WORKERS, falling back to the config default."""
    value = os.environ.get("HSR_MAX_WORKERS")
    return int(value) if value else config.DEFAULT_MAX_WORKERS
