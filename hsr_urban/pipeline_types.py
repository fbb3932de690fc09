"""
Typed result dataclasses for species assessments and step tracking.

These types standardize what each step returns, enabling structured
logging, schema validation, and provenance tracking.
"""

import subprocess
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

import pandas as pd


class StepStatus(str, Enum):
    """Step outcome status."""
    SUCCESS = "success"
    SKIPPED = "skipped"
    ERROR = "error"


def _now_iso():
    return datetime.now(timezone.utc).isoformat()


def _get_git_sha():
    """Return the short git SHA of the current HEAD, or None."""
    try:
        return subprocess.check_output(
            ["git", "rev-parse", "--short", "HEAD"],
            stderr=subprocess.DEVNULL,
            text=True,
        ).strip()
    except (subprocess.SubprocessError, FileNotFoundError):
        return None


@dataclass
class StepResult:
    """Result of a single step execution."""

    step_name: str
    status: str  # "success", "skipped", "error"
    input_summary: dict = field(default_factory=dict)
    output_summary: dict = field(default_factory=dict)
    timing_seconds: float = 0.0
    warnings: list = field(default_factory=list)
    error: Optional[str] = None
    started_at: str = field(default_factory=_now_iso)
    completed_at: Optional[str] = None

    @property
    def ok(self):
        return self.status == StepStatus.SUCCESS

    def to_dict(self):
        return {
            "step_name": self.step_name,
            "status": self.status,
            "input_summary": self.input_summary,
            "output_summary": self.output_summary,
            "timing_seconds": self.timing_seconds,
            "warnings": self.warnings,
            "error": self.error,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_dict(cls, d):
        """Reconstruct a StepResult from a serialized dict."""
        return cls(
            step_name=d["step_name"],
            status=d["status"],
            input_summary=d.get("input_summary", {}),
            output_summary=d.get("output_summary", {}),
            timing_seconds=d.get("timing_seconds", 0.0),
            warnings=d.get("warnings", []),
            error=d.get("error"),
            started_at=d.get("started_at", ""),
            completed_at=d.get("completed_at"),
        )


@dataclass
class HSRResult:
    """Projected habitat-suitable range change for one species and scenario.

    Areas are in square metres. Signed changes are positive for gains
    and negative for losses. Proportions are None when the baseline
    habitat area is zero (see undefined_reason).
    """

    species: str
    taxon: str
    scenario: str
    habitat_preferences: list
    landcover_codes: list
    strategy: str
    baseline_area: float
    horizon_area: float
    proportion_urban_change: Optional[float]
    proportion_total_change: Optional[float]
    urban_change_area: float
    urban_change_by_country: list = field(default_factory=list)
    urban_change_by_cluster: list = field(default_factory=list)
    drivers: list = field(default_factory=list)
    used_global_extent: bool = False
    approximate: bool = False
    undefined_reason: Optional[str] = None

    @property
    def non_urban_change_area(self):
        return sum(d["non_urban_change_area"] for d in self.drivers)

    def to_dict(self):
        return {
            "species": self.species,
            "taxon": self.taxon,
            "scenario": self.scenario,
            "habitat_preferences": list(self.habitat_preferences),
            "landcover_codes": list(self.landcover_codes),
            "strategy": self.strategy,
            "baseline_area": self.baseline_area,
            "horizon_area": self.horizon_area,
            "proportion_urban_change": self.proportion_urban_change,
            "proportion_total_change": self.proportion_total_change,
            "urban_change_area": self.urban_change_area,
            "urban_change_by_country": [dict(r) for r in self.urban_change_by_country],
            "urban_change_by_cluster": [dict(r) for r in self.urban_change_by_cluster],
            "drivers": [dict(r) for r in self.drivers],
            "used_global_extent": self.used_global_extent,
            "approximate": self.approximate,
            "undefined_reason": self.undefined_reason,
        }

    @classmethod
    def from_dict(cls, d):
        """Reconstruct an HSRResult from a serialized dict."""
        return cls(
            species=d["species"],
            taxon=d.get("taxon", ""),
            scenario=d.get("scenario", ""),
            habitat_preferences=d.get("habitat_preferences", []),
            landcover_codes=d.get("landcover_codes", []),
            strategy=d.get("strategy", ""),
            baseline_area=d["baseline_area"],
            horizon_area=d["horizon_area"],
            proportion_urban_change=d.get("proportion_urban_change"),
            proportion_total_change=d.get("proportion_total_change"),
            urban_change_area=d["urban_change_area"],
            urban_change_by_country=d.get("urban_change_by_country", []),
            urban_change_by_cluster=d.get("urban_change_by_cluster", []),
            drivers=d.get("drivers", []),
            used_global_extent=d.get("used_global_extent", False),
            approximate=d.get("approximate", False),
            undefined_reason=d.get("undefined_reason"),
        )

    def summary_row(self):
        """Flat row for the per-species summary table."""
        return {
            "species": self.species,
            "taxon": self.taxon,
            "scenario": self.scenario,
            "strategy": self.strategy,
            "baseline_area": self.baseline_area,
            "horizon_area": self.horizon_area,
            "urban_change_area": self.urban_change_area,
            "non_urban_change_area": self.non_urban_change_area,
            "proportion_urban_change": self.proportion_urban_change,
            "proportion_total_change": self.proportion_total_change,
            "used_global_extent": self.used_global_extent,
            "approximate": self.approximate,
        }

    def breakdown_frames(self):
        """Per-country, per-cluster and per-driver breakdowns as DataFrames."""
        keys = {"species": self.species, "scenario": self.scenario}
        countries = pd.DataFrame(
            [{**keys, **r} for r in self.urban_change_by_country],
            columns=["species", "scenario", "country", "urban_change_area"],
        )
        clusters = pd.DataFrame(
            [{**keys, **r} for r in self.urban_change_by_cluster],
            columns=["species", "scenario", "cluster_id", "cities", "city_ids",
                     "country_of_largest_city", "urban_change_area"],
        )
        drivers = pd.DataFrame(
            [{**keys, **r} for r in self.drivers],
            columns=["species", "scenario", "landcover_code", "label",
                     "non_urban_change_area"],
        )
        return {"countries": countries, "clusters": clusters, "drivers": drivers}


@dataclass
class BatchResult:
    """Results of assessing a batch of species under one scenario."""

    scenario: str = ""
    results: list = field(default_factory=list)
    step_results: list = field(default_factory=list)
    total_time_seconds: float = 0.0
    git_sha: Optional[str] = field(default_factory=_get_git_sha)
    started_at: str = field(default_factory=_now_iso)

    @property
    def all_ok(self):
        return all(s.ok for s in self.step_results)

    @property
    def failed_steps(self):
        return [s for s in self.step_results if not s.ok]

    def summary_frame(self):
        """One row per successfully assessed species."""
        return pd.DataFrame([r.summary_row() for r in self.results])

    def to_dict(self):
        return {
            "scenario": self.scenario,
            "results": [r.to_dict() for r in self.results],
            "steps": [s.to_dict() for s in self.step_results],
            "total_time_seconds": self.total_time_seconds,
            "all_ok": self.all_ok,
            "git_sha": self.git_sha,
            "started_at": self.started_at,
        }

    @classmethod
    def from_dict(cls, d):
        """Reconstruct a BatchResult from a serialized dict."""
        return cls(
            scenario=d.get("scenario", ""),
            results=[HSRResult.from_dict(r) for r in d.get("results", [])],
            step_results=[StepResult.from_dict(s) for s in d.get("steps", [])],
            total_time_seconds=d.get("total_time_seconds", 0.0),
            git_sha=d.get("git_sha"),
            started_at=d.get("started_at", ""),
        )
