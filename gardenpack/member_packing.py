"""Level 2: plants of one cluster seeded on a golden-angle spiral and relaxed inside the cluster disk."""
import math
from typing import Callable, Optional, Tuple

import numpy as np

from gardenpack.geometry import clamp_to_shape, golden_spiral
from gardenpack.models import Bed
from gardenpack.pairs import integrate, pair_vectors, scatter_pairs
from gardenpack.refinement import resolve_collisions
from gardenpack.state import CircleArena, ClusterState, RequestTable

SEED_SPACING = 3.0
MEMBER_COLLISION_SCALE = 2.0
CENTROID_SCALE = 0.02
MEMBER_THRESHOLD_SCALE = 0.05
LOCAL_PASSES = 3


def seed_members(clusters: ClusterState, c: int, requests: RequestTable) -> CircleArena:
    """Arena for cluster ``c``: higher priority, then larger radius, seeded closest to the center."""
    members = clusters.members[c]
    # lexsort sorts by the last key first; ties keep request order
    order = np.lexsort((-requests.radius[members], -requests.priority[members]))
    members = members[order]
    n = len(members)
    return CircleArena(
        request=members.copy(),
        cluster=np.full(n, c, int),
        pos=golden_spiral(clusters.pos[c], n, SEED_SPACING),
        vel=np.zeros((n, 2), float),
        radius=requests.radius[members].copy(),
        priority=requests.priority[members].copy(),
    )


# ---------------- forces ----------------


def member_collision_forces(
    arena: CircleArena, *, min_spacing: float, strength: float
) -> np.ndarray:
    """Overlap push where the higher-priority plant of a pair moves less."""
    n = len(arena)
    I, J, u, dist = pair_vectors(arena.pos)
    min_dist = arena.radius[I] + arena.radius[J] + min_spacing
    mask = (dist < min_dist) & (dist > 0.01)
    if not np.any(mask):
        return np.zeros((n, 2))
    I, J, u, dist, min_dist = I[mask], J[mask], u[mask], dist[mask], min_dist[mask]
    overlap = min_dist - dist
    f = overlap * strength * MEMBER_COLLISION_SCALE * (1.0 + overlap / min_dist)
    pI, pJ = arena.priority[I], arena.priority[J]
    wI = pI / (pI + pJ)
    wJ = pJ / (pI + pJ)
    return scatter_pairs(n, I, J, -(f * wJ)[:, None] * u, (f * wI)[:, None] * u)


def centroid_forces(arena: CircleArena, center: np.ndarray, *, attraction: float) -> np.ndarray:
    dvec = center - arena.pos
    dist = np.linalg.norm(dvec, axis=1)
    F = np.zeros_like(arena.pos)
    mask = dist >= 0.01
    F[mask] = dvec[mask] * (CENTROID_SCALE * attraction)
    return F


def containment_forces(
    arena: CircleArena, center: np.ndarray, cluster_radius: float, *, strength: float
) -> np.ndarray:
    """Push plants back once they stick out of their cluster disk."""
    dvec = arena.pos - center
    dist = np.linalg.norm(dvec, axis=1)
    max_dist = cluster_radius - arena.radius
    F = np.zeros_like(arena.pos)
    mask = (dist > max_dist) & (dist > 0.01)
    if np.any(mask):
        F[mask] = -dvec[mask] / dist[mask][:, None] * ((dist[mask] - max_dist[mask]) * strength)[:, None]
    return F


def relax_members(
    arena: CircleArena,
    center: np.ndarray,
    cluster_radius: float,
    bed: Bed,
    *,
    collision_strength: float,
    intra_group_attraction: float,
    boundary_force: float,
    min_spacing: float,
    damping: float,
    max_iterations: int,
    convergence_threshold: float,
    should_stop: Optional[Callable[[], bool]] = None,
) -> Tuple[int, bool]:
    """Relax one cluster's plants in place, clamping them into the bed after every step.

    The energy is kinetic only and the stop threshold is ``convergence_threshold * 0.05``.
    """
    if len(arena) == 0:
        return 0, True
    threshold = convergence_threshold * MEMBER_THRESHOLD_SCALE
    center = np.asarray(center, float)

    prev_energy = math.inf
    for it in range(max_iterations):
        if should_stop is not None and should_stop():
            return it, False
        F = member_collision_forces(arena, min_spacing=min_spacing, strength=collision_strength)
        F += centroid_forces(arena, center, attraction=intra_group_attraction)
        F += containment_forces(arena, center, cluster_radius, strength=boundary_force)

        integrate(arena.pos, arena.vel, F, damping)
        arena.pos[:] = clamp_to_shape(bed, arena.pos, arena.radius)

        energy = 0.5 * float(np.sum(arena.vel**2))
        if abs(energy - prev_energy) < threshold:
            return it + 1, True
        prev_energy = energy
    return max_iterations, False


def pack_cluster_members(
    clusters: ClusterState,
    c: int,
    requests: RequestTable,
    bed: Bed,
    *,
    relax: bool = True,
    min_spacing: float,
    **relax_params,
) -> Tuple[CircleArena, int, bool]:
    """Seed, relax and locally de-overlap the plants of cluster ``c``.

    With ``relax=False`` the force simulation is skipped; seeding, clamping and the local resolution
    passes still run so the plants end up inside the bed.

    Returns
    -------
    (arena, iterations, converged)
    """
    arena = seed_members(clusters, c, requests)
    arena.pos[:] = clamp_to_shape(bed, arena.pos, arena.radius)
    iterations, converged = 0, False
    if relax:
        iterations, converged = relax_members(
            arena,
            clusters.pos[c],
            float(clusters.radius[c]),
            bed,
            min_spacing=min_spacing,
            **relax_params,
        )
    for _ in range(LOCAL_PASSES):
        resolve_collisions(arena, bed, min_spacing=min_spacing, weights="equal")
    return arena, iterations, converged
