"""Level 1: one meta-circle per plant type, relaxed with pairwise forces inside the bed."""
import math
from typing import Callable, Optional, Sequence, Tuple

import numpy as np

from gardenpack.models import Bed, BedShape, PlantGroup
from gardenpack.pairs import integrate, pair_vectors, scatter_pairs
from gardenpack.state import ClusterState, RequestTable

PACKING_EFFICIENCY = 0.65
INITIAL_SPREAD = 0.8
INITIAL_MARGIN = 10.0
SOFT_MARGIN_FRAC = 0.1
CLUSTER_BOUNDARY_SCALE = 0.3
COMPANION_SCALE = 0.01
ANTAGONIST_RANGE = 3.0


def cluster_radius(member_radii) -> float:
    """Radius of the disk holding the members' total area at the fixed packing efficiency."""
    r = np.asarray(member_radii, float)
    total_area = float(np.sum(np.pi * r**2))
    return math.sqrt(total_area / (math.pi * PACKING_EFFICIENCY))


def initial_cluster_positions(bed: Bed, k: int, random_state: np.random.RandomState) -> np.ndarray:
    if bed.shape == BedShape.circle:
        u = random_state.random_sample((k, 2))
        angle = u[:, 0] * 2 * np.pi
        dist = np.sqrt(u[:, 1]) * bed.cap_radius * INITIAL_SPREAD
        cx, cy = bed.center
        return np.stack([cx + dist * np.cos(angle), cy + dist * np.sin(angle)], axis=1)

    margin = min(INITIAL_MARGIN, min(bed.width, bed.height) / 4.0)
    u = random_state.random_sample((k, 2))
    x = margin + u[:, 0] * (bed.width - 2 * margin)
    y = margin + u[:, 1] * (bed.height - 2 * margin)
    return np.stack([x, y], axis=1)


def create_clusters(
    groups: Sequence[PlantGroup],
    requests: RequestTable,
    bed: Bed,
    random_state: np.random.RandomState,
) -> ClusterState:
    """One cluster per non-empty group, in input order."""
    kept = [gi for gi, g in enumerate(groups) if g.plants]
    members = [np.flatnonzero(requests.group == gi) for gi in kept]
    radius = np.array([cluster_radius(requests.radius[m]) for m in members], float)
    k = len(kept)
    return ClusterState(
        types=[groups[gi].type for gi in kept],
        group=np.asarray(kept, int),
        pos=initial_cluster_positions(bed, k, random_state) if k else np.empty((0, 2)),
        vel=np.zeros((k, 2), float),
        radius=radius,
        members=members,
        companions=[frozenset(groups[gi].companions) for gi in kept],
        antagonists=[frozenset(groups[gi].antagonists) for gi in kept],
    )


# ---------------- forces ----------------


def collision_forces(
    pos: np.ndarray, radius: np.ndarray, *, padding: float, strength: float
) -> np.ndarray:
    """Push overlapping clusters apart, super-linearly in the overlap."""
    n = len(pos)
    I, J, u, dist = pair_vectors(pos)
    min_dist = radius[I] + radius[J] + padding
    mask = (dist < min_dist) & (dist > 0.01)
    if not np.any(mask):
        return np.zeros((n, 2))
    I, J, u = I[mask], J[mask], u[mask]
    overlap = min_dist[mask] - dist[mask]
    f = (overlap * strength * (1.0 + overlap / min_dist[mask]))[:, None] * u
    return scatter_pairs(n, I, J, -f, f)


def relation_forces(
    pos: np.ndarray,
    radius: np.ndarray,
    companions: np.ndarray,
    antagonists: np.ndarray,
    *,
    padding: float,
    attraction: float,
    repulsion: float,
) -> np.ndarray:
    """Spring pull between companion clusters, short-range push between antagonists."""
    n = len(pos)
    I, J, u, dist = pair_vectors(pos)
    F = np.zeros((n, 2))
    if len(I) == 0:
        return F

    comp = companions[I, J] & (dist > 0.01)
    if np.any(comp):
        f = (dist[comp] * COMPANION_SCALE * attraction)[:, None] * u[comp]
        F += scatter_pairs(n, I[comp], J[comp], f, -f)

    reach = radius[I] + radius[J] + ANTAGONIST_RANGE * padding
    anta = antagonists[I, J] & (dist < reach) & (dist > 0.01)
    if np.any(anta):
        f = ((reach[anta] - dist[anta]) * repulsion)[:, None] * u[anta]
        F += scatter_pairs(n, I[anta], J[anta], -f, f)
    return F


def boundary_forces(pos: np.ndarray, bed: Bed, *, strength: float) -> np.ndarray:
    """Gentle pull toward the bed once a cluster center enters the soft margin."""
    soft = SOFT_MARGIN_FRAC * min(bed.width, bed.height)
    gentle = strength * CLUSTER_BOUNDARY_SCALE
    F = np.zeros_like(pos)

    if bed.shape == BedShape.circle:
        center = np.asarray(bed.center)
        dvec = pos - center
        dist = np.linalg.norm(dvec, axis=1)
        limit = bed.cap_radius - soft
        mask = dist > limit
        if np.any(mask):
            F[mask] = -dvec[mask] / dist[mask][:, None] * ((dist[mask] - limit) * gentle)[:, None]
        return F

    x, y = pos[:, 0], pos[:, 1]
    F[:, 0] += np.where(x < soft, (soft - x) * gentle, 0.0)
    F[:, 0] -= np.where(x > bed.width - soft, (x - (bed.width - soft)) * gentle, 0.0)
    F[:, 1] += np.where(y < soft, (soft - y) * gentle, 0.0)
    F[:, 1] -= np.where(y > bed.height - soft, (y - (bed.height - soft)) * gentle, 0.0)
    return F


def cluster_energy(state: ClusterState, bed: Bed) -> float:
    """Kinetic energy plus a quadratic penalty for cluster disks sticking out of the bed."""
    kinetic = 0.5 * float(np.sum(state.vel**2))
    r = state.radius
    if bed.shape == BedShape.circle:
        dist = np.linalg.norm(state.pos - np.asarray(bed.center), axis=1)
        excess = np.maximum(dist + r - bed.cap_radius, 0.0)
        return kinetic + float(np.sum(excess**2))

    x, y = state.pos[:, 0], state.pos[:, 1]
    excess = (
        np.maximum(r - x, 0.0) ** 2
        + np.maximum(x - (bed.width - r), 0.0) ** 2
        + np.maximum(r - y, 0.0) ** 2
        + np.maximum(y - (bed.height - r), 0.0) ** 2
    )
    return kinetic + float(np.sum(excess))


def relax_clusters(
    state: ClusterState,
    bed: Bed,
    *,
    collision_strength: float,
    cluster_padding: float,
    intra_group_attraction: float,
    inter_group_repulsion: float,
    boundary_force: float,
    damping: float,
    max_iterations: int,
    convergence_threshold: float,
    should_stop: Optional[Callable[[], bool]] = None,
) -> Tuple[int, bool]:
    """Relax cluster positions in place.

    Returns
    -------
    (iterations, converged): number of integration steps taken and whether the energy delta dropped
    below ``convergence_threshold`` before the budget ran out.
    """
    if len(state) == 0:
        return 0, True
    companions, antagonists = state.relation_matrices()

    prev_energy = math.inf
    for it in range(max_iterations):
        if should_stop is not None and should_stop():
            return it, False
        F = collision_forces(
            state.pos, state.radius, padding=cluster_padding, strength=collision_strength
        )
        F += relation_forces(
            state.pos,
            state.radius,
            companions,
            antagonists,
            padding=cluster_padding,
            attraction=intra_group_attraction,
            repulsion=inter_group_repulsion,
        )
        F += boundary_forces(state.pos, bed, strength=boundary_force)
        integrate(state.pos, state.vel, F, damping)

        energy = cluster_energy(state, bed)
        if abs(energy - prev_energy) < convergence_threshold:
            return it + 1, True
        prev_energy = energy
    return max_iterations, False
