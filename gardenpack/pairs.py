from typing import Tuple

import numpy as np


def pair_vectors(P: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """All unordered pairs (i < j) with unit vectors pointing from i to j.

    Returns (I, J, u, dist). Coincident centers get the fixed direction (1, 0).
    """
    n = len(P)
    I, J = np.triu_indices(n, k=1)
    dvec = P[J] - P[I]
    dist = np.linalg.norm(dvec, axis=1)
    u = np.zeros_like(dvec)
    nz = dist >= 1e-12
    u[nz] = dvec[nz] / dist[nz][:, None]
    if np.any(~nz):  # coincident fallback
        u[~nz, 0] = 1.0
    return I, J, u, dist


def scatter_pairs(
    n: int, I: np.ndarray, J: np.ndarray, dI: np.ndarray, dJ: np.ndarray
) -> np.ndarray:
    """Sum per-pair (m, 2) increments dI onto nodes I and dJ onto nodes J."""
    out = np.zeros((n, 2), float)
    if len(I) == 0:
        return out
    out[:, 0] = np.bincount(I, weights=dI[:, 0], minlength=n) + np.bincount(
        J, weights=dJ[:, 0], minlength=n
    )
    out[:, 1] = np.bincount(I, weights=dI[:, 1], minlength=n) + np.bincount(
        J, weights=dJ[:, 1], minlength=n
    )
    return out


def integrate(pos: np.ndarray, vel: np.ndarray, force: np.ndarray, damping: float) -> None:
    """Damped explicit step, in place: v = (v + F) * damping; x += v."""
    vel += force
    vel *= damping
    pos += vel
