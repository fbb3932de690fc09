"""Projected habitat-suitable range change attributed to urban and non-urban land use."""

__version__ = "0.1.0"
