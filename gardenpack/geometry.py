"""Containment tests and clamping of disks against the three bed shapes.

All functions accept either one center ``(2,)`` with a scalar radius or ``(n, 2)`` centers with ``(n,)``
(or scalar) radii, and answer in the same form.
"""
from typing import Tuple, Union

import numpy as np

from gardenpack.models import Bed, BedShape

ArrayOrBool = Union[bool, np.ndarray]

GOLDEN_ANGLE = 2.4


def _prepare(xy, radius) -> Tuple[np.ndarray, np.ndarray, bool]:
    P = np.asarray(xy, float)
    single = P.ndim == 1
    P = np.atleast_2d(P)
    r = np.broadcast_to(np.asarray(radius, float), (P.shape[0],))
    return P, r, single


def _clip_interval(v: np.ndarray, lo: np.ndarray, hi: np.ndarray, mid: float) -> np.ndarray:
    # a disk wider than the interval sits at its middle
    return np.where(lo > hi, mid, np.clip(v, lo, np.maximum(lo, hi)))


def _scale_into_disk(P, r, center, R):
    dvec = P - center
    dist = np.linalg.norm(dvec, axis=1)
    max_dist = np.maximum(R - r, 0.0)
    out = P.copy()
    mask = dist > max_dist
    if np.any(mask):
        out[mask] = center + dvec[mask] * (max_dist[mask] / dist[mask])[:, None]
    return out


# ---------------- pill (stadium) helpers, long axis along u ----------------


def _pill_inside(u, v, r, long_side, short_side, eps):
    cap = short_side / 2.0
    lo_cap, hi_cap = cap, long_side - cap
    inside = np.empty(u.shape, bool)

    middle = (u >= lo_cap) & (u <= hi_cap)
    inside[middle] = (v[middle] - r[middle] >= -eps) & (
        v[middle] + r[middle] <= short_side + eps
    )
    for cap_mask, cap_u in ((u < lo_cap, lo_cap), (u > hi_cap, hi_cap)):
        d = np.hypot(u[cap_mask] - cap_u, v[cap_mask] - cap)
        inside[cap_mask] = d + r[cap_mask] <= cap + eps
    return inside


def _pill_clamp(U, r, long_side, short_side):
    cap = short_side / 2.0
    lo_cap, hi_cap = cap, long_side - cap
    u = U[:, 0]
    out = U.copy()

    middle = (u >= lo_cap) & (u <= hi_cap)
    if np.any(middle):
        rm = r[middle]
        out[middle, 0] = _clip_interval(u[middle], rm, long_side - rm, long_side / 2.0)
        out[middle, 1] = _clip_interval(U[middle, 1], rm, short_side - rm, cap)
    for cap_mask, cap_u in ((u < lo_cap, lo_cap), (u > hi_cap, hi_cap)):
        if np.any(cap_mask):
            out[cap_mask] = _scale_into_disk(
                U[cap_mask], r[cap_mask], np.array([cap_u, cap]), cap
            )
    return out


# ---------------- public API ----------------


def inside_shape(bed: Bed, xy, radius, eps: float = 1e-9) -> ArrayOrBool:
    """True where the disk of ``radius`` centered at ``xy`` lies fully inside the bed."""
    P, r, single = _prepare(xy, radius)
    x, y = P[:, 0], P[:, 1]

    if bed.shape == BedShape.circle:
        cx, cy = bed.center
        inside = np.hypot(x - cx, y - cy) + r <= bed.cap_radius + eps
    elif bed.shape == BedShape.pill:
        if bed.is_horizontal:
            inside = _pill_inside(x, y, r, bed.width, bed.height, eps)
        else:
            inside = _pill_inside(y, x, r, bed.height, bed.width, eps)
    else:
        inside = (
            (x - r >= -eps)
            & (x + r <= bed.width + eps)
            & (y - r >= -eps)
            & (y + r <= bed.height + eps)
        )

    return bool(inside[0]) if single else inside


def clamp_to_shape(bed: Bed, xy, radius) -> np.ndarray:
    """Move each disk to the closest position (along its sub-region's rule) that lies inside the bed.

    Rectangle: clip the center to ``[r, W - r] x [r, H - r]``.
    Circle: scale the offset from the bed center onto the ``R - r`` circle.
    Pill: clip inside the middle rectangle, or scale the offset from the nearer cap center onto the
    ``cap - r`` circle when the center lies beyond a cap center.
    """
    P, r, single = _prepare(xy, radius)

    if bed.shape == BedShape.circle:
        out = _scale_into_disk(P, r, np.asarray(bed.center), bed.cap_radius)
    elif bed.shape == BedShape.pill:
        if bed.is_horizontal:
            out = _pill_clamp(P, r, bed.width, bed.height)
        else:
            out = _pill_clamp(P[:, ::-1], r, bed.height, bed.width)[:, ::-1]
    else:
        out = np.empty_like(P)
        out[:, 0] = _clip_interval(P[:, 0], r, bed.width - r, bed.width / 2.0)
        out[:, 1] = _clip_interval(P[:, 1], r, bed.height - r, bed.height / 2.0)

    return out[0] if single else out


def shape_outline(bed: Bed, n_points: int = 256) -> np.ndarray:
    """Closed polyline (n, 2) of the bed boundary, used for plotting."""
    if bed.shape == BedShape.circle:
        t = np.linspace(0, 2 * np.pi, n_points)
        cx, cy = bed.center
        return np.stack([cx + bed.cap_radius * np.cos(t), cy + bed.cap_radius * np.sin(t)], axis=1)
    if bed.shape == BedShape.pill:
        cap = bed.cap_radius
        long_side = max(bed.width, bed.height)
        half = n_points // 2
        t1 = np.linspace(-np.pi / 2, np.pi / 2, half)
        t2 = np.linspace(np.pi / 2, 3 * np.pi / 2, half)
        far = np.stack([long_side - cap + cap * np.cos(t1), cap + cap * np.sin(t1)], axis=1)
        near = np.stack([cap + cap * np.cos(t2), cap + cap * np.sin(t2)], axis=1)
        outline = np.vstack([far, near, far[:1]])
        return outline if bed.is_horizontal else outline[:, ::-1]
    return np.array(
        [[0, 0], [bed.width, 0], [bed.width, bed.height], [0, bed.height], [0, 0]], float
    )


def golden_spiral(center, n: int, step: float) -> np.ndarray:
    """``n`` points of the spiral ``angle = i * GOLDEN_ANGLE``, ``dist = sqrt(i) * step`` around ``center``.

    The distance to the center never decreases with ``i``.
    """
    i = np.arange(n, dtype=float)
    angle = i * GOLDEN_ANGLE
    dist = np.sqrt(i) * step
    return np.asarray(center, float) + np.stack([np.cos(angle) * dist, np.sin(angle) * dist], axis=1)
