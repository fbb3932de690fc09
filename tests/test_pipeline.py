"""
Tests for scenario preparation and batch assessment.

Verifies that:
1. Scenario products are built once and shared read-only
2. A failing species is recorded as an error step without aborting
   the batch, and results keep input order
3. A failing scenario does not prevent other scenarios from running
4. Cluster and result tables are validated, with violations recorded as
   step warnings rather than failures
5. Serial and parallel batches produce identical results
"""

import geopandas as gpd
import numpy as np
import pytest

from hsr_urban import pipeline
from hsr_urban.pipeline import (
    ScenarioInputs,
    assess_species,
    prepare_scenario,
    run_batch,
    run_scenarios,
)
from hsr_urban.pipeline_types import BatchResult
from hsr_urban.errors import GridMismatchError
from tests.conftest import CRS, cell_box, make_spec, make_species


@pytest.fixture
def prepared(scenario_inputs):
    return prepare_scenario(scenario_inputs)


def _species_list(spec):
    return [
        make_species(spec, prefs=(2,), name="Forest bird"),
        make_species(spec, prefs=(13,), name="Town bird"),
        make_species(spec, prefs=(12,), name="Field bird"),
    ]


def _with_inputs(inputs, **changes):
    fields = {k: getattr(inputs, k) for k in (
        "name", "spec", "landcover_baseline", "landcover_horizon",
        "reference_landcover", "urban_baseline", "urban_horizon",
        "elevation", "countries", "cities")}
    fields.update(changes)
    return ScenarioInputs(**fields)


class TestPrepareScenario:

    def test_products_read_only(self, prepared):
        assert not prepared.landcover.habitat.baseline.flags.writeable
        assert not prepared.urban_horizon.flags.writeable
        assert not prepared.cell_area.flags.writeable

    def test_no_clusters_without_cities(self, prepared):
        assert len(prepared.clusters) == 0

    def test_mismatched_inputs_rejected(self, scenario_inputs):
        with pytest.raises(GridMismatchError):
            _with_inputs(scenario_inputs, elevation=np.zeros((3, 3)))

    def test_baseline_secondary_vegetation_passed_through(self, scenario_inputs):
        baseline = scenario_inputs.landcover_baseline.copy()
        baseline[4, 4] = 6
        prepared = prepare_scenario(_with_inputs(scenario_inputs, landcover_baseline=baseline))
        assert prepared.reclassified.baseline[4, 4] == 6

    def test_unknown_scenario_rejected(self, scenario_inputs):
        with pytest.raises(ValueError, match="ssp9"):
            prepare_scenario(_with_inputs(scenario_inputs, name="ssp9"))

    def test_valid_clusters_have_no_warnings(self, prepared):
        assert prepared.warnings == ()

    def test_cluster_table_validated(self, scenario_inputs, monkeypatch, caplog):
        bad = gpd.GeoDataFrame(
            {"cluster_id": [1], "cities": [""], "city_ids": [""],
             "country_of_largest_city": ["A"], "n_cities": [1], "area": [1.0]},
            geometry=[cell_box(0, 0, 1, 1)], crs=CRS,
        )
        monkeypatch.setattr(pipeline, "extract_clusters", lambda *a, **k: bad)
        with caplog.at_level("WARNING", logger="hsr_urban.pipeline"):
            prepared = prepare_scenario(scenario_inputs)

        columns = {w.split("column='")[1].split("'")[0] for w in prepared.warnings}
        assert columns == {"cities", "area"}
        assert all(w.startswith("[clusters_ssp1]") for w in prepared.warnings)
        assert "[clusters_ssp1] Schema violation" in caplog.text


class TestRunBatch:

    def test_all_species_assessed_in_order(self, prepared):
        batch = run_batch(prepared, _species_list(prepared.spec))
        assert batch.all_ok
        assert [r.species for r in batch.results] == [
            "Forest bird", "Town bird", "Field bird"]
        assert [s.step_name for s in batch.step_results] == [
            "assess_Forest bird", "assess_Town bird", "assess_Field bird"]
        assert batch.scenario == "ssp1"

    def test_failure_isolated(self, prepared):
        species = _species_list(prepared.spec)
        broken = make_species(make_spec(3, 3), name="Broken range")
        batch = run_batch(prepared, [species[0], broken, species[1]])

        assert not batch.all_ok
        assert [s.step_name for s in batch.failed_steps] == ["assess_Broken range"]
        assert "GridMismatchError" in batch.failed_steps[0].error
        assert [r.species for r in batch.results] == ["Forest bird", "Town bird"]

    def test_summary_frame(self, prepared):
        frame = run_batch(prepared, _species_list(prepared.spec)).summary_frame()
        assert len(frame) == 3
        assert set(frame["strategy"]) == {"urban_intolerant", "urban_tolerant"}

    def test_batch_serialisation(self, prepared):
        batch = run_batch(prepared, _species_list(prepared.spec)[:1])
        restored = BatchResult.from_dict(batch.to_dict())
        assert restored.results[0].to_dict() == batch.results[0].to_dict()
        assert restored.step_results[0].step_name == "assess_Forest bird"

    def test_parallel_matches_serial(self, prepared):
        species = _species_list(prepared.spec)
        serial = run_batch(prepared, species, max_workers=1)
        parallel = run_batch(prepared, species, max_workers=2)
        assert ([r.to_dict() for r in parallel.results]
                == [r.to_dict() for r in serial.results])

    def test_order_independent(self, prepared):
        species = _species_list(prepared.spec)
        forward = {r.species: r.to_dict() for r in run_batch(prepared, species).results}
        backward = {r.species: r.to_dict()
                    for r in run_batch(prepared, species[::-1]).results}
        assert forward == backward

    def test_single_result_matches_direct_call(self, prepared):
        species = _species_list(prepared.spec)[0]
        batch = run_batch(prepared, [species])
        assert batch.results[0].to_dict() == assess_species(prepared, species).to_dict()

    def test_clean_results_have_no_warnings(self, prepared):
        batch = run_batch(prepared, _species_list(prepared.spec))
        assert all(s.warnings == [] for s in batch.step_results)
        assert batch.step_results[0].input_summary["habitats"] == [
            "Evergreen Broadleaf Forests"]

    def test_result_validation_recorded_as_warnings(self, prepared, monkeypatch):
        monkeypatch.setattr(pipeline, "validate_result",
                            lambda r: [f"[summary] {r.species} flagged"])
        batch = run_batch(prepared, _species_list(prepared.spec)[:2])
        assert batch.all_ok
        assert [s.warnings for s in batch.step_results] == [
            ["[summary] Forest bird flagged"], ["[summary] Town bird flagged"]]


class TestRunScenarios:

    def test_failing_scenario_isolated(self, scenario_inputs):
        bad = _with_inputs(scenario_inputs, name="ssp9")

        batches = run_scenarios([scenario_inputs, bad],
                                _species_list(scenario_inputs.spec))

        assert [b.scenario for b in batches] == ["ssp1", "ssp9"]
        assert batches[0].all_ok
        assert len(batches[0].results) == 3
        assert batches[0].step_results[0].step_name == "prepare_ssp1"
        assert batches[1].results == []
        assert batches[1].failed_steps[0].step_name == "prepare_ssp9"
        assert "Unknown scenario" in batches[1].failed_steps[0].error

    def test_cluster_warnings_on_prepare_step(self, scenario_inputs, monkeypatch):
        monkeypatch.setattr(pipeline, "validate_schema",
                            lambda df, schema, name, strict=False: [f"[{name}] flagged"])
        batches = run_scenarios([scenario_inputs], [])
        assert batches[0].step_results[0].warnings == ["[clusters_ssp1] flagged"]


def test_default_workers_from_env(monkeypatch):
    monkeypatch.setenv("HSR_MAX_WORKERS", "3")
    assert pipeline.default_workers() == 3
    monkeypatch.delenv("HSR_MAX_WORKERS")
    assert pipeline.default_workers() >= 1
