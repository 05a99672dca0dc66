from typing import List

import numpy as np

from gardenpack import PlantGroup, PlantRequest
from gardenpack.geometry import inside_shape
from gardenpack.models import Bed, PackingResult

# PLANT GROUPS


def make_group(
    plant_type: str,
    radius: float,
    count: int,
    priority: float = 1.0,
    companions=(),
    antagonists=(),
) -> PlantGroup:
    return PlantGroup(
        type=plant_type,
        plants=[PlantRequest(radius=radius, priority=priority) for _ in range(count)],
        companions=companions,
        antagonists=antagonists,
    )


def kitchen_garden_groups() -> List[PlantGroup]:
    """Tomatoes with basil companions and a thyme border, sized for a 48 x 48 bed."""
    return [
        make_group("Tomato", 12, 2, priority=5, companions=("Basil",), antagonists=("Fennel",)),
        make_group("Basil", 5, 6, priority=4, companions=("Tomato",)),
        make_group("Thyme", 4, 10, priority=2),
    ]


def ratio_groups() -> List[PlantGroup]:
    """Three equally sized types at priorities 5/4/2 with counts in the same proportion."""
    return [
        make_group("Pepper", 4, 10, priority=5),
        make_group("Lettuce", 4, 8, priority=4),
        make_group("Chive", 4, 4, priority=2),
    ]


# CHECKS


def placement_arrays(result: PackingResult):
    xy = np.array([[p.x, p.y] for p in result.placements], float).reshape(-1, 2)
    r = np.array([p.radius for p in result.placements], float)
    return xy, r


def all_inside(result: PackingResult, bed: Bed) -> bool:
    xy, r = placement_arrays(result)
    return bool(np.all(inside_shape(bed, xy, r))) if len(r) else True


def type_counts(result: PackingResult) -> dict:
    return {t.type: t.actual for t in result.stats.type_counts}
