"""Global refinement of placed disks: overlap resolution, Lloyd smoothing, fallback placers, cleanup.

The overlap resolver is a capped Jacobi pass over all pairs: every violating pair proposes a move for
both ends, increments are summed per disk, each disk's total step is capped by its worst incident
pair step, and the disks are clamped back into the bed.
"""
from typing import Optional, Tuple

import numpy as np
from scipy.spatial import cKDTree

from gardenpack.geometry import clamp_to_shape, golden_spiral, inside_shape
from gardenpack.models import Bed
from gardenpack.pairs import pair_vectors, scatter_pairs
from gardenpack.state import CircleArena, ClusterState

GREEDY_ATTEMPTS = 500
GREEDY_STEP = 3.0
EMERGENCY_ATTEMPTS = 2000
EMERGENCY_STEP = 4.0
EMERGENCY_JITTER = 5.0
FINAL_OVERSHOOT = 1.1
FINAL_TOLERANCE = 0.01
GREEDY_TRIGGER_FRAC = 0.1


# ---------------- overlap resolution ----------------


def count_collisions(
    pos: np.ndarray, radius: np.ndarray, min_spacing: float, tolerance: float = 0.0
) -> int:
    """Number of pairs closer than ``r_i + r_j + min_spacing - tolerance``."""
    if len(pos) < 2:
        return 0
    I, J, _, dist = pair_vectors(pos)
    return int(np.count_nonzero(dist < radius[I] + radius[J] + min_spacing - tolerance))


def resolve_collisions(
    arena: CircleArena,
    bed: Bed,
    *,
    min_spacing: float,
    weights: str = "equal",
    overshoot: float = 1.0,
    tolerance: float = 0.0,
    node_cap: float = 1.0,
    clamp: bool = True,
) -> int:
    """One positional correction pass over all pairs, in place.

    Parameters
    ----------
    weights: "equal" or "priority"
        With "equal" both disks of a violating pair take half of the correction; with "priority" the
        disk with the lower priority takes the larger share.
    overshoot: float
        Factor applied to the overlap before splitting it.
    tolerance: float
        Pairs are violating when closer than ``r_i + r_j + min_spacing - tolerance``.
    node_cap: float
        A disk's summed step is capped at ``node_cap`` times its largest single pair step.

    Returns
    -------
    violations: number of violating pairs found before the correction.
    """
    n = len(arena)
    if n < 2:
        return 0
    if weights not in ("equal", "priority"):
        raise ValueError(f'weights should be "equal" or "priority", got {weights!r}.')

    P, r = arena.pos, arena.radius
    I, J, u, dist = pair_vectors(P)
    min_dist = r[I] + r[J] + min_spacing
    mask = dist < min_dist - tolerance
    count = int(np.count_nonzero(mask))
    if count == 0:
        return 0

    I, J, u = I[mask], J[mask], u[mask]
    move = overshoot * (min_dist[mask] - dist[mask])
    if weights == "priority":
        pI, pJ = arena.priority[I], arena.priority[J]
        tI = pJ / (pI + pJ)
        tJ = pI / (pI + pJ)
    else:
        tI = tJ = np.full(len(I), 0.5)

    stepI, stepJ = tI * move, tJ * move
    add = scatter_pairs(n, I, J, -stepI[:, None] * u, stepJ[:, None] * u)

    # node-wise cap vs worst incident step
    worst = np.zeros(n, float)
    np.maximum.at(worst, I, stepI)
    np.maximum.at(worst, J, stepJ)
    cap = node_cap * worst
    step_norm = np.hypot(add[:, 0], add[:, 1])
    scale = np.ones(n, float)
    over = step_norm > cap + 1e-12
    scale[over] = cap[over] / (step_norm[over] + 1e-12)

    P += add * scale[:, None]
    if clamp:
        P[:] = clamp_to_shape(bed, P, r)
    return count


def final_collision_resolution(
    arena: CircleArena, bed: Bed, *, min_spacing: float, max_passes: int = 100
) -> Tuple[int, int]:
    """Priority-weighted passes with overshoot until a pass finds nothing or the budget runs out.

    Returns
    -------
    (residual, passes): violations found by the last pass and the number of passes run.
    """
    residual = 0
    for passes in range(1, max_passes + 1):
        residual = resolve_collisions(
            arena,
            bed,
            min_spacing=min_spacing,
            weights="priority",
            overshoot=FINAL_OVERSHOOT,
            tolerance=FINAL_TOLERANCE,
        )
        if residual == 0:
            return 0, passes
    return residual, max_passes


def needs_greedy_fallback(residual: int, n_circles: int) -> bool:
    return residual > GREEDY_TRIGGER_FRAC * n_circles


# ---------------- Lloyd relaxation ----------------


def lloyd_relaxation(
    arena: CircleArena,
    bed: Bed,
    *,
    iterations: int = 2,
    neighbor_radius: float = 30.0,
    step: float = 0.15,
    min_spacing: float,
    resolve_passes: int = 3,
) -> int:
    """Move every disk a fraction of the way to the inverse-distance-weighted centroid of its neighbors.

    Neighbors closer than 0.01 are ignored. Each iteration is followed by ``resolve_passes`` equal-split
    overlap passes. Returns the number of iterations run.
    """
    n = len(arena)
    if n < 2:
        return 0
    for _ in range(iterations):
        tree = cKDTree(arena.pos)
        D = tree.sparse_distance_matrix(tree, neighbor_radius, output_type="coo_matrix")
        rows, cols, d = D.row, D.col, D.data
        keep = (rows != cols) & (d >= 0.01) & (d < neighbor_radius)
        rows, cols, d = rows[keep], cols[keep], d[keep]

        if len(rows):
            w = 1.0 / d
            total = np.bincount(rows, weights=w, minlength=n)
            cx = np.bincount(rows, weights=w * arena.pos[cols, 0], minlength=n)
            cy = np.bincount(rows, weights=w * arena.pos[cols, 1], minlength=n)
            has = total > 0
            centroid = np.stack([cx[has] / total[has], cy[has] / total[has]], axis=1)
            arena.pos[has] += (centroid - arena.pos[has]) * step
            arena.pos[:] = clamp_to_shape(bed, arena.pos, arena.radius)

        for _ in range(resolve_passes):
            resolve_collisions(arena, bed, min_spacing=min_spacing, weights="equal")
    return iterations


# ---------------- sequential placers ----------------


def free_candidates(
    candidates: np.ndarray,
    radius: float,
    placed_pos: np.ndarray,
    placed_radius: np.ndarray,
    bed: Bed,
    spacing: float,
) -> np.ndarray:
    """Mask of candidate centers that fit in the bed and keep ``spacing`` to every placed disk."""
    valid = inside_shape(bed, candidates, radius)
    if len(placed_pos) and np.any(valid):
        d = np.linalg.norm(candidates[:, None, :] - placed_pos[None, :, :], axis=2)
        valid &= np.all(d >= radius + placed_radius[None, :] + spacing, axis=1)
    return valid


def _first(valid: np.ndarray) -> Optional[int]:
    idx = np.flatnonzero(valid)
    return int(idx[0]) if len(idx) else None


def placement_order(arena: CircleArena) -> np.ndarray:
    """Priority descending, then radius descending; ties keep arena order."""
    return np.lexsort((-arena.radius, -arena.priority))


def greedy_placement(
    arena: CircleArena,
    clusters: ClusterState,
    bed: Bed,
    *,
    min_spacing: float,
    attempts: int = GREEDY_ATTEMPTS,
    step: float = GREEDY_STEP,
) -> Tuple[CircleArena, CircleArena]:
    """Re-place every disk one at a time at the nearest free spot on a spiral around its cluster center.

    Spiral distance grows with the attempt index, so the first free candidate is the closest one.

    Returns
    -------
    (placed, failed)
    """
    order = placement_order(arena)
    placed_pos, placed_r, placed_idx, failed_idx = [], [], [], []
    for i in order:
        r = float(arena.radius[i])
        c = int(arena.cluster[i])
        target = clusters.pos[c] if 0 <= c < len(clusters) else np.asarray(bed.center)
        target = clamp_to_shape(bed, target, r)
        cand = golden_spiral(target, attempts, step)
        valid = free_candidates(
            cand, r, np.asarray(placed_pos).reshape(-1, 2), np.asarray(placed_r), bed, min_spacing
        )
        k = _first(valid)
        if k is None:
            failed_idx.append(i)
            continue
        arena.pos[i] = cand[k]
        placed_pos.append(cand[k])
        placed_r.append(r)
        placed_idx.append(i)

    placed = arena.take(np.asarray(placed_idx, int))
    placed.vel[:] = 0.0
    return placed, arena.take(np.asarray(failed_idx, int))


def emergency_placement(
    arena: CircleArena,
    bed: Bed,
    random_state: np.random.RandomState,
    *,
    min_spacing: float,
    attempts: int = EMERGENCY_ATTEMPTS,
    step: float = EMERGENCY_STEP,
    jitter: float = EMERGENCY_JITTER,
) -> CircleArena:
    """Last resort: wide jittered spiral around the bed center with halved spacing."""
    spacing = min_spacing * 0.5
    order = placement_order(arena)
    placed_pos, placed_r, placed_idx = [], [], []
    for i in order:
        r = float(arena.radius[i])
        cand = golden_spiral(bed.center, attempts, step)
        cand += (random_state.random_sample((attempts, 2)) - 0.5) * (2 * jitter)
        valid = free_candidates(
            cand, r, np.asarray(placed_pos).reshape(-1, 2), np.asarray(placed_r), bed, spacing
        )
        k = _first(valid)
        if k is None:
            continue
        arena.pos[i] = cand[k]
        placed_pos.append(cand[k])
        placed_r.append(r)
        placed_idx.append(i)

    placed = arena.take(np.asarray(placed_idx, int))
    placed.vel[:] = 0.0
    return placed


# ---------------- bounds cleanup ----------------


def bounds_cleanup(arena: CircleArena, bed: Bed, *, min_spacing: float) -> Tuple[CircleArena, int, int]:
    """Clamp every disk that is not fully inside the bed, or drop it.

    A disk is dropped when its clamped position is still outside (it is larger than the bed) or when
    clamping creates a collision with a disk it did not collide with before.

    Returns
    -------
    (arena, clamped, removed)
    """
    outside = np.flatnonzero(~inside_shape(bed, arena.pos, arena.radius)) if len(arena) else []
    keep = np.ones(len(arena), bool)
    clamped = 0
    for i in outside:
        r = arena.radius[i]
        new = clamp_to_shape(bed, arena.pos[i], r)
        if not inside_shape(bed, new, r):
            keep[i] = False
            continue
        others = np.flatnonzero(keep)
        others = others[others != i]
        min_dist = r + arena.radius[others] + min_spacing
        before = np.linalg.norm(arena.pos[others] - arena.pos[i], axis=1) < min_dist
        after = np.linalg.norm(arena.pos[others] - new, axis=1) < min_dist
        if np.any(after & ~before):
            keep[i] = False
            continue
        arena.pos[i] = new
        clamped += 1

    removed = int(np.count_nonzero(~keep))
    if removed:
        arena = arena.take(np.flatnonzero(keep))
    return arena, clamped, removed
