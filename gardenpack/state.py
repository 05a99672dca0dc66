from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional, Sequence

import numpy as np

from gardenpack.models import PlantGroup


@dataclass
class RequestTable:
    """Flat view over every requested plant instance of one packing run.

    Row ``i`` is request ``i``; clusters and placed circles refer to requests by row index.
    """

    ids: List[str]
    types: List[str]
    varieties: List[Optional[str]]
    radius: np.ndarray
    priority: np.ndarray
    group: np.ndarray

    @classmethod
    def from_groups(cls, groups: Sequence[PlantGroup]) -> "RequestTable":
        ids, types, varieties, radius, priority, group = [], [], [], [], [], []
        explicit = [str(p.id) for g in groups for p in g.plants if p.id is not None]
        used = set(explicit)
        if len(used) != len(explicit):
            seen = set()
            for pid in explicit:
                if pid in seen:
                    raise ValueError(f"Duplicate plant id: {pid!r}. Plant ids should be unique.")
                seen.add(pid)
        next_id = 1
        for gi, g in enumerate(groups):
            for p in g.plants:
                pid = p.id
                if pid is None:
                    while f"plant_{next_id}" in used:
                        next_id += 1
                    pid = f"plant_{next_id}"
                    used.add(pid)
                ids.append(str(pid))
                types.append(g.type)
                varieties.append(p.variety)
                radius.append(p.radius)
                priority.append(p.priority)
                group.append(gi)
        return cls(
            ids=ids,
            types=types,
            varieties=varieties,
            radius=np.asarray(radius, float),
            priority=np.asarray(priority, float),
            group=np.asarray(group, int),
        )

    def __len__(self):
        return len(self.ids)


@dataclass
class ClusterState:
    """Level-1 meta-circles, one row per plant type."""

    types: List[str]
    group: np.ndarray
    pos: np.ndarray
    vel: np.ndarray
    radius: np.ndarray
    members: List[np.ndarray]
    companions: List[FrozenSet[str]] = field(default_factory=list)
    antagonists: List[FrozenSet[str]] = field(default_factory=list)

    def __len__(self):
        return len(self.types)

    @property
    def ids(self) -> List[str]:
        return [f"cluster_{i}" for i in range(len(self))]

    def index_of_type(self, plant_type: str) -> Optional[int]:
        try:
            return self.types.index(plant_type)
        except ValueError:
            return None

    def relation_matrices(self):
        """Symmetric (k, k) masks of companion and antagonist pairs; companion wins when both hold."""
        k = len(self)
        comp = np.zeros((k, k), bool)
        anta = np.zeros((k, k), bool)
        for i in range(k):
            for j in range(k):
                if i == j:
                    continue
                ti, tj = self.types[i], self.types[j]
                comp[i, j] = tj in self.companions[i] or ti in self.companions[j]
                anta[i, j] = tj in self.antagonists[i] or ti in self.antagonists[j]
        return comp, anta & ~comp


@dataclass
class CircleArena:
    """Placed plant disks as parallel arrays; ``request`` and ``cluster`` are row indices."""

    request: np.ndarray
    cluster: np.ndarray
    pos: np.ndarray
    vel: np.ndarray
    radius: np.ndarray
    priority: np.ndarray

    @classmethod
    def empty(cls) -> "CircleArena":
        return cls(
            request=np.empty(0, int),
            cluster=np.empty(0, int),
            pos=np.empty((0, 2), float),
            vel=np.empty((0, 2), float),
            radius=np.empty(0, float),
            priority=np.empty(0, float),
        )

    @classmethod
    def concat(cls, arenas: Sequence["CircleArena"]) -> "CircleArena":
        arenas = [a for a in arenas if len(a)]
        if not arenas:
            return cls.empty()
        return cls(
            request=np.concatenate([a.request for a in arenas]),
            cluster=np.concatenate([a.cluster for a in arenas]),
            pos=np.concatenate([a.pos for a in arenas]),
            vel=np.concatenate([a.vel for a in arenas]),
            radius=np.concatenate([a.radius for a in arenas]),
            priority=np.concatenate([a.priority for a in arenas]),
        )

    def __len__(self):
        return len(self.request)

    def take(self, idx) -> "CircleArena":
        idx = np.asarray(idx)
        return CircleArena(
            request=self.request[idx].copy(),
            cluster=self.cluster[idx].copy(),
            pos=self.pos[idx].copy(),
            vel=self.vel[idx].copy(),
            radius=self.radius[idx].copy(),
            priority=self.priority[idx].copy(),
        )

    def append(self, request: int, cluster: int, xy, radius: float, priority: float) -> None:
        self.request = np.append(self.request, int(request))
        self.cluster = np.append(self.cluster, int(cluster))
        self.pos = np.vstack([self.pos, np.asarray(xy, float)[None, :]])
        self.vel = np.vstack([self.vel, np.zeros((1, 2))])
        self.radius = np.append(self.radius, float(radius))
        self.priority = np.append(self.priority, float(priority))
