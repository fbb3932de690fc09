"""
Tests for urban cluster extraction and naming.

Verifies that extract_clusters:
1. Thresholds the horizon urban probability strictly above 0.25
2. Groups cells into 8-connected components by default
3. Keeps clusters with at least one city and area >= 400 km² (inclusive)
4. Names clusters by city population with deterministic tie-breaking
"""

import numpy as np
import pytest

from hsr_urban import config
from hsr_urban.clusters import (
    CLUSTER_COLUMNS,
    extract_clusters,
    label_components,
    polygon_areas,
)
from tests.conftest import CELL_AREA, make_cities, make_spec


def _block_grid(height, width, blocks, value=0.9):
    grid = np.zeros((height, width))
    for r0, c0, r1, c1 in blocks:
        grid[r0:r1, c0:c1] = value
    return grid


class TestThresholdAndConnectivity:

    def test_threshold_is_strict(self):
        spec = make_spec(5, 5)
        grid = np.full(spec.shape, config.CLUSTER_PROBABILITY_THRESHOLD)
        cities = make_cities([("A", 1, 100, "X", 2, 2)])
        out = extract_clusters(grid, spec, cities, min_area=0)
        assert len(out) == 0

    def test_diagonal_cells_join_with_8_connectivity(self):
        mask = np.array([[1, 0], [0, 1]], dtype=bool)
        _, n8 = label_components(mask, 8)
        _, n4 = label_components(mask, 4)
        assert n8 == 1
        assert n4 == 2

    def test_invalid_connectivity_rejected(self):
        with pytest.raises(ValueError):
            label_components(np.ones((2, 2), dtype=bool), 6)

    def test_nan_probability_is_not_urban(self):
        spec = make_spec(3, 3)
        grid = np.full(spec.shape, np.nan)
        out = extract_clusters(grid, spec, make_cities([]), min_area=0)
        assert len(out) == 0
        assert list(out.columns) == CLUSTER_COLUMNS


class TestAreaAndCityFilters:

    def test_block_of_exactly_min_area_is_kept(self):
        """A 20 x 20 km block covers exactly 400 km² and must be retained."""
        spec = make_spec(30, 30)
        grid = _block_grid(30, 30, [(5, 5, 25, 25)])
        cities = make_cities([("Capital", 10, 5_000_000, "Ruritania", 15, 15)])

        out = extract_clusters(grid, spec, cities)

        assert len(out) == 1
        assert out["area"].iloc[0] == pytest.approx(400 * CELL_AREA)
        assert out["cities"].iloc[0] == "Capital"

    def test_block_one_cell_short_is_dropped(self):
        spec = make_spec(30, 30)
        grid = _block_grid(30, 30, [(5, 5, 25, 25)])
        grid[24, 24] = 0.0
        cities = make_cities([("Capital", 10, 5_000_000, "Ruritania", 15, 15)])

        out = extract_clusters(grid, spec, cities)
        assert len(out) == 0

    def test_cluster_without_city_is_dropped(self):
        spec = make_spec(10, 10)
        grid = _block_grid(10, 10, [(0, 0, 3, 3), (6, 6, 9, 9)])
        cities = make_cities([("Inside", 1, 1000, "X", 1, 1)])

        out = extract_clusters(grid, spec, cities, min_area=0)

        assert len(out) == 1
        assert out["cities"].iloc[0] == "Inside"
        assert out["n_cities"].iloc[0] == 1

    def test_geographic_grid_area_uses_equal_area_projection(self):
        from shapely.geometry import box
        import geopandas as gpd

        gdf = gpd.GeoDataFrame(geometry=[box(0, 0, 1, 1)], crs="EPSG:4326")
        area = polygon_areas(gdf).iloc[0]
        # One degree square at the equator is roughly 111 km x 111 km.
        assert area == pytest.approx(1.23e10, rel=0.02)


class TestNaming:

    def test_cities_ordered_by_population(self):
        spec = make_spec(10, 10)
        grid = _block_grid(10, 10, [(0, 0, 5, 5)])
        cities = make_cities([
            ("Small", 3, 1_000, "Lowland", 0, 0),
            ("Big", 1, 900_000, "Highland", 2, 2),
            ("Mid", 2, 50_000, "Lowland", 4, 4),
        ])

        row = extract_clusters(grid, spec, cities, min_area=0).iloc[0]

        assert row["cities"] == "Big,Mid,Small"
        assert row["city_ids"] == "1,2,3"
        assert row["country_of_largest_city"] == "Highland"
        assert row["n_cities"] == 3

    def test_population_ties_broken_by_name(self):
        spec = make_spec(10, 10)
        grid = _block_grid(10, 10, [(0, 0, 5, 5)])
        cities = make_cities([
            ("Zeta", 7, 1_000, "Z", 0, 0),
            ("Alpha", 8, 1_000, "A", 1, 1),
        ])

        row = extract_clusters(grid, spec, cities, min_area=0).iloc[0]
        assert row["cities"] == "Alpha,Zeta"
        assert row["country_of_largest_city"] == "A"

    def test_names_truncated_to_max_cities(self):
        spec = make_spec(10, 10)
        grid = _block_grid(10, 10, [(0, 0, 10, 10)])
        rows = [(f"City{i:02d}", i, 1000 * (i + 1), "X", i // 10, i % 10)
                for i in range(15)]
        out = extract_clusters(grid, spec, make_cities(rows), min_area=0)

        row = out.iloc[0]
        assert len(row["cities"].split(",")) == config.CLUSTER_MAX_CITIES
        assert row["cities"].split(",")[0] == "City14"
        assert row["n_cities"] == 15

    def test_cities_in_other_crs_are_reprojected(self):
        spec = make_spec(10, 10)
        grid = _block_grid(10, 10, [(0, 0, 5, 5)])
        cities = make_cities([("Town", 5, 10_000, "X", 2, 2)]).to_crs("EPSG:4326")

        out = extract_clusters(grid, spec, cities, min_area=0)
        assert out["cities"].tolist() == ["Town"]

    def test_repeated_runs_are_identical(self):
        spec = make_spec(10, 10)
        grid = _block_grid(10, 10, [(0, 0, 3, 3), (5, 5, 9, 9)])
        cities = make_cities([
            ("A", 1, 10, "X", 1, 1),
            ("B", 2, 20, "Y", 6, 6),
        ])

        first = extract_clusters(grid, spec, cities, min_area=0)
        second = extract_clusters(grid, spec, cities, min_area=0)

        assert first.drop(columns="geometry").equals(second.drop(columns="geometry"))
        assert list(first["cluster_id"]) == sorted(first["cluster_id"])
