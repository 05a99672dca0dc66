import math
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import pandas as pd


class BedShape(str, Enum):
    rectangle = "rectangle"
    circle = "circle"
    pill = "pill"

    @classmethod
    def parse(cls, shape) -> "BedShape":
        if isinstance(shape, cls):
            return shape
        if not isinstance(shape, str) or not shape.strip():
            raise ValueError(
                f"Invalid bed shape: {shape!r}. "
                f'Please select one from: {", ".join(s.value for s in cls)}.'
            )
        try:
            return cls[shape.strip().lower()]
        except KeyError:
            raise ValueError(
                f"Invalid bed shape: {shape!r}. "
                f'Please select one from: {", ".join(s.value for s in cls)}.'
            )


def _check_positive(name: str, value) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} should be a positive number, got {value!r}.")
    if not math.isfinite(value) or value <= 0:
        raise ValueError(f"{name} should be a positive number, got {value}.")
    return value


@dataclass(frozen=True)
class Bed:
    """A planting bed: the boundary every placed disk has to fit in.

    Lengths are in a consistent unit (inches in the garden planner). For a pill bed the long axis is
    the x axis when width >= height, otherwise the y axis, and the caps have a radius of half the
    shorter side.
    """

    width: float
    height: float
    shape: BedShape = BedShape.rectangle
    name: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "width", _check_positive("Bed width", self.width))
        object.__setattr__(self, "height", _check_positive("Bed height", self.height))
        object.__setattr__(self, "shape", BedShape.parse(self.shape))

    @property
    def center(self) -> Tuple[float, float]:
        return self.width / 2.0, self.height / 2.0

    @property
    def is_horizontal(self) -> bool:
        return self.width >= self.height

    @property
    def cap_radius(self) -> float:
        return min(self.width, self.height) / 2.0

    @property
    def area(self) -> float:
        if self.shape == BedShape.circle:
            return math.pi * self.cap_radius**2
        if self.shape == BedShape.pill:
            r = self.cap_radius
            long_side = max(self.width, self.height)
            return (long_side - 2 * r) * 2 * r + math.pi * r**2
        return self.width * self.height


@dataclass(frozen=True)
class PlantRequest:
    radius: float
    priority: float = 1.0
    id: Optional[str] = None
    variety: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "radius", _check_positive("Plant radius", self.radius))
        object.__setattr__(
            self, "priority", _check_positive("Plant priority", self.priority)
        )


def _as_type_keys(value) -> Tuple[str, ...]:
    # a bare string is one key, not a sequence of characters
    if isinstance(value, str):
        return (value,)
    return tuple(value or ())


@dataclass
class PlantGroup:
    """All requested instances of one plant type.

    The type key is used verbatim: companion and antagonist lookups compare keys exactly, so callers
    normalize keys (case, whitespace) before building groups.
    """

    type: str
    plants: List[PlantRequest] = field(default_factory=list)
    companions: Tuple[str, ...] = ()
    antagonists: Tuple[str, ...] = ()

    def __post_init__(self):
        if not isinstance(self.type, str) or not self.type:
            raise ValueError(f"Plant type should be a non-empty string, got {self.type!r}.")
        self.plants = [
            p if isinstance(p, PlantRequest) else PlantRequest(**p) for p in self.plants
        ]
        self.companions = _as_type_keys(self.companions)
        self.antagonists = _as_type_keys(self.antagonists)

    @property
    def mean_priority(self) -> float:
        if not self.plants:
            return 1.0
        return sum(p.priority for p in self.plants) / len(self.plants)

    @property
    def mean_radius(self) -> float:
        if not self.plants:
            return 0.0
        return sum(p.radius for p in self.plants) / len(self.plants)


def group_plants_by_type(
    specs: Iterable[Mapping[str, Any]],
    companions: Optional[Mapping[str, Sequence[str]]] = None,
    antagonists: Optional[Mapping[str, Sequence[str]]] = None,
) -> List[PlantGroup]:
    """Build plant groups from flat plant specs.

    Parameters
    ----------
    specs: iterable of mappings
        Each spec has a ``type`` and either a ``size`` (canopy diameter) or a ``radius``, plus optional
        ``count`` (default 1), ``priority`` (default 1) and ``variety``. Specs sharing a type key are
        merged into one group in first-seen order.

    companions, antagonists: mapping type -> list of types, optional
        Relationship tables, looked up with the exact type key.

    Returns
    -------
    groups: list of PlantGroup, with sequential string ids ("1", "2", ...) assigned across all groups.
    """
    companions = companions or {}
    antagonists = antagonists or {}
    groups: Dict[str, PlantGroup] = {}
    next_id = 1

    for spec in specs:
        plant_type = spec.get("type")
        if "radius" in spec:
            radius = spec["radius"]
        elif "size" in spec:
            radius = _check_positive("Plant size", spec["size"]) / 2.0
        else:
            raise ValueError(f"Plant spec for {plant_type!r} needs a size or a radius.")
        count = int(spec.get("count", 1))
        if count < 0:
            raise ValueError(f"Plant count for {plant_type!r} should be >= 0, got {count}.")

        if plant_type not in groups:
            groups[plant_type] = PlantGroup(
                type=plant_type,
                companions=companions.get(plant_type, ()),
                antagonists=antagonists.get(plant_type, ()),
            )
        group = groups[plant_type]
        for _ in range(count):
            group.plants.append(
                PlantRequest(
                    radius=radius,
                    priority=spec.get("priority", 1.0),
                    id=str(next_id),
                    variety=spec.get("variety"),
                )
            )
            next_id += 1

    return list(groups.values())


# ---------------- packing output ----------------


@dataclass
class Placement:
    id: str
    type: str
    x: float
    y: float
    size: float
    cluster_id: str
    priority: float
    variety: Optional[str] = None

    @property
    def radius(self) -> float:
        return self.size / 2.0


@dataclass
class TypeCount:
    type: str
    requested: int
    actual: int
    ratio: float
    target_share: float
    actual_share: float


@dataclass
class PackingStats:
    placed: int
    requested: int
    fill_rate: float
    clusters: int
    iterations: int
    converged: bool
    member_iterations: Dict[str, int]
    member_converged: Dict[str, bool]
    collision_passes: int
    residual_collisions: int
    fallback: Optional[str]
    lloyd_iterations: int
    space_fill_added: int
    rebalance_added: int
    packing_density: float
    bed_area: float
    packed_area: float
    clamped: int
    removed: int
    timed_out: bool
    elapsed: float
    type_counts: List[TypeCount]


@dataclass
class BoundsViolation:
    id: str
    type: str
    x: float
    y: float
    radius: float


@dataclass
class CollisionViolation:
    pair: Tuple[str, str]
    distance: float
    min_distance: float
    overlap: float


@dataclass
class ViolationReport:
    bounds: List[BoundsViolation] = field(default_factory=list)
    collisions: List[CollisionViolation] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.bounds and not self.collisions


@dataclass
class ClusterInfo:
    id: str
    type: str
    x: float
    y: float
    radius: float
    plant_count: int


@dataclass
class PackingResult:
    placements: List[Placement]
    stats: PackingStats
    violations: ViolationReport
    clusters: List[ClusterInfo]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def placements_frame(self) -> pd.DataFrame:
        columns = ["id", "type", "x", "y", "size", "cluster_id", "priority", "variety"]
        return pd.DataFrame([asdict(p) for p in self.placements], columns=columns)

    def type_counts_frame(self) -> pd.DataFrame:
        columns = ["type", "requested", "actual", "ratio", "target_share", "actual_share"]
        frame = pd.DataFrame([asdict(t) for t in self.stats.type_counts], columns=columns)
        return frame.set_index("type")
