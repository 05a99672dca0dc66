import unittest

import numpy as np
import pytest
from utils import all_inside, kitchen_garden_groups, make_group, placement_arrays, ratio_groups, type_counts

from gardenpack import Bed, HierarchicalCirclePacker, PlantGroup
from gardenpack.space_fill import SpaceFiller


class TestKitchenGarden(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.bed = Bed(48, 48)
        cls.groups = kitchen_garden_groups()
        cls.packer = HierarchicalCirclePacker(random_state=42)
        cls.result = cls.packer.pack(cls.bed, cls.groups)

    def test_one_cluster_per_type(self):
        self.assertEqual(self.result.stats.clusters, 3)
        self.assertEqual([c.type for c in self.result.clusters], ["Tomato", "Basil", "Thyme"])
        self.assertEqual([c.plant_count for c in self.result.clusters], [2, 6, 10])

    def test_everything_is_inside_the_bed(self):
        self.assertEqual(self.result.violations.bounds, [])
        self.assertTrue(all_inside(self.result, self.bed))

    def test_few_collisions(self):
        placed = self.result.stats.placed
        self.assertGreater(placed, 0)
        self.assertLess(len(self.result.violations.collisions), 0.05 * placed)

    def test_residual_collisions_match_the_report(self):
        self.assertEqual(
            self.result.stats.residual_collisions, len(self.result.violations.collisions)
        )

    def test_density(self):
        stats = self.result.stats
        xy, r = placement_arrays(self.result)
        self.assertAlmostEqual(stats.packed_area, float(np.sum(np.pi * r**2)))
        self.assertAlmostEqual(stats.bed_area, 48 * 48)
        self.assertGreaterEqual(stats.packing_density, 0.40)
        self.assertLessEqual(stats.packing_density, 0.65)
        self.assertLess(stats.fill_rate, 1.0)

    def test_only_requested_plants_are_placed(self):
        ids = [p.id for p in self.result.placements]
        requested = {self.packer.requests_.ids[i]: self.packer.requests_.types[i] for i in range(18)}

        self.assertEqual(len(ids), len(set(ids)))
        for p in self.result.placements:
            self.assertEqual(requested[p.id], p.type)
        for t in self.result.stats.type_counts:
            self.assertLessEqual(t.actual, t.requested)
        self.assertEqual(self.result.stats.requested, 18)
        self.assertAlmostEqual(self.result.stats.fill_rate, self.result.stats.placed / 18)

    def test_placements_point_at_their_cluster(self):
        cluster_of_type = {c.type: c.id for c in self.result.clusters}
        for p in self.result.placements:
            self.assertEqual(p.cluster_id, cluster_of_type[p.type])

    def test_frames_and_dict(self):
        frame = self.result.placements_frame()
        self.assertEqual(len(frame), self.result.stats.placed)
        self.assertEqual(
            list(frame.columns), ["id", "type", "x", "y", "size", "cluster_id", "priority", "variety"]
        )
        counts = self.result.type_counts_frame()
        self.assertEqual(counts.loc["Tomato", "requested"], 2)

        as_dict = self.result.to_dict()
        self.assertEqual(set(as_dict), {"placements", "stats", "violations", "clusters"})
        self.assertEqual(len(as_dict["placements"]), self.result.stats.placed)

    def test_state(self):
        state = self.packer.get_state()
        self.assertEqual(state["bed"], self.bed)
        self.assertEqual(len(state["circles"]), self.result.stats.placed)
        self.assertEqual(state["config"]["random_state"], 42)
        self.assertEqual(len(state["clusters"]), 3)


class TestBedShapes(unittest.TestCase):
    def test_horizontal_pill(self):
        bed = Bed(72, 24, "pill")
        groups = [make_group("Carrot", 2, 14, priority=3), make_group("Onion", 2.5, 8, priority=2)]
        result = HierarchicalCirclePacker(random_state=0).pack(bed, groups)

        self.assertEqual(result.violations.bounds, [])
        self.assertTrue(all_inside(result, bed))
        self.assertGreater(result.stats.placed, 0)

    def test_vertical_pill(self):
        bed = Bed(24, 72, "pill")
        groups = [make_group("Carrot", 2, 14, priority=3), make_group("Onion", 2.5, 8, priority=2)]
        result = HierarchicalCirclePacker(random_state=0).pack(bed, groups)
        self.assertTrue(all_inside(result, bed))

    def test_circle(self):
        bed = Bed(60, 60, "circle")
        result = HierarchicalCirclePacker(random_state=1).pack(bed, kitchen_garden_groups())

        self.assertEqual(result.violations.bounds, [])
        self.assertTrue(all_inside(result, bed))
        self.assertAlmostEqual(result.stats.bed_area, np.pi * 900)


class TestRatios(unittest.TestCase):
    def test_ample_bed_matches_priority_shares(self):
        result = HierarchicalCirclePacker(random_state=3).pack(Bed(96, 96), ratio_groups())
        counts = type_counts(result)
        total = sum(counts.values())

        self.assertGreater(total, 0)
        for t in result.stats.type_counts:
            self.assertAlmostEqual(t.actual_share, counts[t.type] / total)
            self.assertLessEqual(abs(t.actual_share - t.target_share) / t.target_share, 0.25)
        np.testing.assert_allclose(
            [t.target_share for t in result.stats.type_counts], [5 / 11, 4 / 11, 2 / 11]
        )


class TestEdgeCases(unittest.TestCase):
    def test_no_groups(self):
        result = HierarchicalCirclePacker(random_state=0).pack(Bed(20, 20), [])
        self.assertEqual(result.placements, [])
        self.assertEqual(result.stats.clusters, 0)
        self.assertEqual(result.stats.fill_rate, 1.0)
        self.assertTrue(result.violations.ok)

    def test_empty_group_creates_no_cluster(self):
        groups = [make_group("Dill", 3, 0), make_group("Sage", 2, 3)]
        result = HierarchicalCirclePacker(random_state=0).pack(Bed(30, 30), groups)

        self.assertEqual([c.type for c in result.clusters], ["Sage"])
        self.assertEqual(result.stats.placed, 3)
        dill = result.type_counts_frame().loc["Dill"]
        self.assertEqual((dill["requested"], dill["actual"]), (0, 0))

    def test_bed_too_small_for_several_plants(self):
        packer = HierarchicalCirclePacker(random_state=0)
        with self.assertWarns(RuntimeWarning):
            result = packer.pack(Bed(5, 5), [make_group("Squash", 4, 3)])

        self.assertEqual(result.stats.placed, 0)
        self.assertEqual(result.stats.fill_rate, 0.0)
        self.assertEqual(result.stats.fallback, "emergency")
        self.assertTrue(result.violations.ok)

    def test_single_plant_larger_than_bed_is_removed(self):
        result = HierarchicalCirclePacker(random_state=0).pack(Bed(10, 10), [make_group("Squash", 8, 1)])
        self.assertEqual(result.stats.placed, 0)
        self.assertEqual(result.stats.removed, 1)
        self.assertEqual(result.violations.bounds, [])

    def test_mappings_are_accepted(self):
        result = HierarchicalCirclePacker(random_state=0).pack(
            {"width": 30, "height": 30, "shape": "circle"},
            [{"type": "Sage", "plants": [{"radius": 2, "id": "s1"}, {"radius": 2, "id": "s2"}]}],
        )
        self.assertEqual(sorted(p.id for p in result.placements), ["s1", "s2"])

    def test_time_budget(self):
        packer = HierarchicalCirclePacker(random_state=0, max_time=1e-9)
        result = packer.pack(Bed(48, 48), kitchen_garden_groups())
        stats = result.stats

        self.assertTrue(stats.timed_out)
        self.assertEqual((stats.iterations, stats.converged), (0, False))
        self.assertEqual((stats.lloyd_iterations, stats.space_fill_added), (0, 0))
        self.assertEqual(result.violations.bounds, [])

    def test_deterministic_for_a_seed(self):
        def layout(seed):
            result = HierarchicalCirclePacker(random_state=seed).pack(Bed(48, 48), kitchen_garden_groups())
            return [(p.id, p.x, p.y) for p in result.placements]

        self.assertEqual(layout(7), layout(7))


def test_pack_plants_groups_flat_specs():
    specs = [
        {"type": "Tomato", "size": 16, "count": 2, "priority": 5},
        {"type": "Basil", "size": 8, "count": 3, "priority": 4},
    ]
    packer = HierarchicalCirclePacker(random_state=0)
    result = packer.pack_plants(Bed(60, 40), specs, companions={"Tomato": ["Basil"]})

    assert [c.type for c in result.clusters] == ["Tomato", "Basil"]
    assert result.stats.requested == 5
    assert {p.id for p in result.placements} <= {"1", "2", "3", "4", "5"}
    assert all(p.size in (16, 8) for p in result.placements)


def test_reset():
    packer = HierarchicalCirclePacker(random_state=0)
    packer.pack(Bed(20, 20), [make_group("Sage", 2, 2)])
    assert packer.reset() is packer
    assert packer.result_ is None and packer.arena_ is None and packer.clusters_ is None
    assert packer.get_state()["circles"] is None


@pytest.mark.parametrize(
    "params",
    [
        {"damping": 0},
        {"damping": 1.5},
        {"min_spacing": -1},
        {"collision_strength": float("nan")},
        {"max_iterations": 0},
        {"convergence_threshold": 0},
        {"lloyd_step": 2},
        {"lloyd_iterations": -1},
        {"max_time": 0},
    ],
)
def test_invalid_parameters(params):
    with pytest.raises(ValueError):
        HierarchicalCirclePacker(**params).pack(Bed(20, 20), [make_group("Sage", 2, 2)])


def test_duplicate_types_are_rejected():
    groups = [make_group("Sage", 2, 2), PlantGroup(type="Sage")]
    with pytest.raises(ValueError, match="Duplicate plant type"):
        HierarchicalCirclePacker().pack(Bed(20, 20), groups)


def test_invalid_bed():
    with pytest.raises(ValueError):
        HierarchicalCirclePacker().pack((20, 20), [make_group("Sage", 2, 2)])


@pytest.mark.parametrize("seed", [1, 10])
def test_residual_collisions_use_the_report_tolerance(seed):
    result = HierarchicalCirclePacker(random_state=seed).pack(Bed(48, 48), kitchen_garden_groups())
    assert result.stats.residual_collisions == len(result.violations.collisions)


def test_unseeded_packing_leaves_the_global_generator_alone():
    np.random.seed(123)
    HierarchicalCirclePacker().pack(Bed(48, 48), kitchen_garden_groups())
    assert np.random.random_sample() == np.random.RandomState(123).random_sample()


def test_duplicate_plant_ids_are_rejected():
    groups = [
        PlantGroup("Sage", [{"radius": 2, "id": "herb"}]),
        PlantGroup("Mint", [{"radius": 2, "id": "herb"}]),
    ]
    with pytest.raises(ValueError, match="Duplicate plant id"):
        HierarchicalCirclePacker().pack(Bed(20, 20), groups)


def max_share_deviation(counts, targets):
    total = sum(counts.values())
    return max(abs(counts.get(t, 0) / total - share) / share for t, share in targets.items())


def test_filling_a_crowded_bed_moves_shares_toward_priority_targets(monkeypatch):
    # far more plants than fit: greedy placement drops some, filling adds them back
    groups = [make_group("Radish", 1, 120), make_group("Spinach", 1, 120)]
    before = {}
    space_fill = SpaceFiller.space_fill

    def recording_space_fill(self, *args, **kwargs):
        before.update(self.type_counts())
        return space_fill(self, *args, **kwargs)

    monkeypatch.setattr(SpaceFiller, "space_fill", recording_space_fill)
    result = HierarchicalCirclePacker(random_state=0).pack(Bed(30, 30), groups)
    stats = result.stats
    targets = {t.type: t.target_share for t in stats.type_counts}
    after = type_counts(result)

    assert stats.fallback == "greedy"
    assert stats.placed < stats.requested
    assert stats.space_fill_added + stats.rebalance_added > 0
    assert sum(after.values()) > sum(before.values())
    assert max_share_deviation(after, targets) <= max_share_deviation(before, targets)
    assert result.violations.bounds == []
