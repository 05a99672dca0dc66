import math
from typing import Any, Dict, Sequence

import numpy as np

from gardenpack.geometry import inside_shape
from gardenpack.models import (
    Bed,
    BoundsViolation,
    ClusterInfo,
    CollisionViolation,
    PackingResult,
    PackingStats,
    Placement,
    PlantGroup,
    TypeCount,
    ViolationReport,
)
from gardenpack.pairs import pair_vectors
from gardenpack.space_fill import target_ratios
from gardenpack.state import CircleArena, ClusterState, RequestTable

COLLISION_TOLERANCE = 0.1


def validate_placements(
    arena: CircleArena,
    requests: RequestTable,
    bed: Bed,
    *,
    min_spacing: float,
    tolerance: float = COLLISION_TOLERANCE,
) -> ViolationReport:
    """Disks not fully inside the bed and pairs closer than ``r_i + r_j + min_spacing - tolerance``."""
    report = ViolationReport()
    if len(arena) == 0:
        return report

    outside = np.flatnonzero(~inside_shape(bed, arena.pos, arena.radius))
    for i in outside:
        req = arena.request[i]
        report.bounds.append(
            BoundsViolation(
                id=requests.ids[req],
                type=requests.types[req],
                x=float(arena.pos[i, 0]),
                y=float(arena.pos[i, 1]),
                radius=float(arena.radius[i]),
            )
        )

    I, J, _, dist = pair_vectors(arena.pos)
    min_dist = arena.radius[I] + arena.radius[J] + min_spacing
    for k in np.flatnonzero(dist < min_dist - tolerance):
        i, j = I[k], J[k]
        report.collisions.append(
            CollisionViolation(
                pair=(requests.ids[arena.request[i]], requests.ids[arena.request[j]]),
                distance=float(dist[k]),
                min_distance=float(min_dist[k]),
                overlap=float(min_dist[k] - dist[k]),
            )
        )
    return report


def build_result(
    arena: CircleArena,
    requests: RequestTable,
    clusters: ClusterState,
    groups: Sequence[PlantGroup],
    bed: Bed,
    *,
    min_spacing: float,
    diagnostics: Dict[str, Any],
) -> PackingResult:
    """Assemble placements, statistics, the violation report and cluster metadata.

    ``diagnostics`` carries the per-phase counters collected by the packer (iterations, convergence
    flags, fallback used, additions, cleanup counts, timing). ``residual_collisions`` is the number of
    collisions in the violations report.
    """
    cluster_ids = clusters.ids
    placements = [
        Placement(
            id=requests.ids[req],
            type=requests.types[req],
            x=float(arena.pos[i, 0]),
            y=float(arena.pos[i, 1]),
            size=2.0 * float(arena.radius[i]),
            cluster_id=cluster_ids[arena.cluster[i]],
            priority=float(arena.priority[i]),
            variety=requests.varieties[req],
        )
        for i, req in enumerate(arena.request)
    ]

    placed = len(placements)
    targets = target_ratios(groups)
    actual: Dict[str, int] = {}
    for p in placements:
        actual[p.type] = actual.get(p.type, 0) + 1
    type_counts = []
    for g in groups:
        requested = len(g.plants)
        n = actual.get(g.type, 0)
        type_counts.append(
            TypeCount(
                type=g.type,
                requested=requested,
                actual=n,
                ratio=n / requested if requested else 0.0,
                target_share=targets.get(g.type, 0.0),
                actual_share=n / placed if placed else 0.0,
            )
        )

    violations = validate_placements(arena, requests, bed, min_spacing=min_spacing)
    requested_total = len(requests)
    packed_area = float(np.sum(math.pi * arena.radius**2))
    stats = PackingStats(
        placed=placed,
        requested=requested_total,
        fill_rate=placed / requested_total if requested_total else 1.0,
        clusters=len(clusters),
        packing_density=packed_area / bed.area,
        bed_area=bed.area,
        packed_area=packed_area,
        residual_collisions=len(violations.collisions),
        type_counts=type_counts,
        **diagnostics,
    )

    cluster_info = [
        ClusterInfo(
            id=cluster_ids[c],
            type=clusters.types[c],
            x=float(clusters.pos[c, 0]),
            y=float(clusters.pos[c, 1]),
            radius=float(clusters.radius[c]),
            plant_count=len(clusters.members[c]),
        )
        for c in range(len(clusters))
    ]

    return PackingResult(
        placements=placements,
        stats=stats,
        violations=violations,
        clusters=cluster_info,
    )
