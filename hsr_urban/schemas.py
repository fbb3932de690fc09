"""
Pandera DataFrame schemas for assessment result tables.

Check both structure and value sanity of the tables derived from
HSRResult records (areas non-negative, proportions finite, land-cover
codes positive).

Usage:
    from hsr_urban.schemas import SummarySchema
    SummarySchema.validate(df)  # raises pa.errors.SchemaError on failure
"""

import pandera as pa
from pandera import Column, Check, DataFrameSchema

from hsr_urban import config


# ── Per-species summary ─────────────────────────────────────────────────

SummarySchema = DataFrameSchema(
    columns={
        "species": Column(str, nullable=False),
        "scenario": Column(str, nullable=False),
        "strategy": Column(str, Check.isin(["urban_intolerant", "urban_tolerant"]),
                           nullable=False),
        "baseline_area": Column(float, Check.greater_than_or_equal_to(0.0),
                                nullable=False),
        "horizon_area": Column(float, Check.greater_than_or_equal_to(0.0),
                               nullable=False),
        "urban_change_area": Column(float, nullable=False),
        # Undefined when the baseline habitat area is zero.
        "proportion_urban_change": Column(float, nullable=True),
        "proportion_total_change": Column(float, Check.greater_than_or_equal_to(-1.0),
                                          nullable=True),
    },
    strict=False,
    coerce=True,
    name="SummarySchema",
)


# ── Per-country urban change ────────────────────────────────────────────

CountryBreakdownSchema = DataFrameSchema(
    columns={
        "species": Column(str, nullable=False),
        "country": Column(str, nullable=False),
        "urban_change_area": Column(float, nullable=False),
    },
    strict=False,
    coerce=True,
    name="CountryBreakdownSchema",
)


# ── Per-cluster urban change ────────────────────────────────────────────

ClusterBreakdownSchema = DataFrameSchema(
    columns={
        "species": Column(str, nullable=False),
        "cluster_id": Column(int, Check.greater_than(0), nullable=False),
        "cities": Column(str, Check.str_length(min_value=1), nullable=False),
        "urban_change_area": Column(float, nullable=False),
    },
    strict=False,
    coerce=True,
    name="ClusterBreakdownSchema",
)


# ── Non-urban drivers ───────────────────────────────────────────────────

DriverBreakdownSchema = DataFrameSchema(
    columns={
        "species": Column(str, nullable=False),
        "landcover_code": Column(int, Check.greater_than(config.NODATA_CODE),
                                 nullable=False, unique=False),
        "label": Column(str, Check.str_length(min_value=1), nullable=False),
        "non_urban_change_area": Column(float, nullable=False),
    },
    strict=False,
    coerce=True,
    name="DriverBreakdownSchema",
)


# ── Urban clusters ──────────────────────────────────────────────────────

ClusterSchema = DataFrameSchema(
    columns={
        "cluster_id": Column(int, Check.greater_than(0), nullable=False, unique=True),
        "cities": Column(str, Check.str_length(min_value=1), nullable=False),
        "area": Column(float, Check.greater_than_or_equal_to(config.CLUSTER_MIN_AREA_M2),
                       nullable=False),
    },
    strict=False,
    coerce=True,
    name="ClusterSchema",
)


# ── Convenience validation function ─────────────────────────────────────

def validate_schema(df, schema, step_name, strict=False):
    """Validate a DataFrame against a Pandera schema.

    Parameters
    ----------
    df : pd.DataFrame
        DataFrame to validate.
    schema : pa.DataFrameSchema
        Schema to validate against.
    step_name : str
        Step name for error messages.
    strict : bool
        If True, raise on failure. If False, return warnings list.

    Returns
    -------
    list[str]
        Validation warning messages (empty if all pass).

    Raises
    ------
    ValueError
        Only if strict=True and validation fails.
    """
    warnings_list = []

    if df is None:
        msg = f"[{step_name}] DataFrame is None"
        if strict:
            raise ValueError(msg)
        return [msg]

    if len(df) == 0:
        # Empty breakdowns are legitimate (no country holds habitat).
        return []

    try:
        schema.validate(df, lazy=True)
    except pa.errors.SchemaErrors as exc:
        for failure in exc.failure_cases.itertuples():
            msg = (
                f"[{step_name}] Schema violation: "
                f"column='{failure.column}' check='{failure.check}' "
                f"failure_case={failure.failure_case}"
            )
            warnings_list.append(msg)

        if strict:
            raise ValueError(
                f"[{step_name}] Schema validation failed with "
                f"{len(warnings_list)} errors"
            ) from exc

    return warnings_list


def validate_result(result, strict=False):
    """Validate every table derived from one HSRResult."""
    import pandas as pd

    frames = result.breakdown_frames()
    warnings_list = validate_schema(
        pd.DataFrame([result.summary_row()]), SummarySchema, "summary", strict)
    warnings_list += validate_schema(frames["countries"], CountryBreakdownSchema,
                                     "countries", strict)
    warnings_list += validate_schema(frames["clusters"], ClusterBreakdownSchema,
                                     "clusters", strict)
    warnings_list += validate_schema(frames["drivers"], DriverBreakdownSchema,
                                     "drivers", strict)
    return warnings_list
