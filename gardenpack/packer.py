import time
import warnings
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

import numpy as np
from sklearn.base import BaseEstimator

from gardenpack.cluster_packing import create_clusters, relax_clusters
from gardenpack.member_packing import pack_cluster_members
from gardenpack.models import Bed, PackingResult, PlantGroup, group_plants_by_type
from gardenpack.refinement import (
    bounds_cleanup,
    emergency_placement,
    final_collision_resolution,
    greedy_placement,
    lloyd_relaxation,
    needs_greedy_fallback,
)
from gardenpack.result import build_result
from gardenpack.space_fill import SpaceFiller, target_ratios
from gardenpack.state import CircleArena, ClusterState, RequestTable


class _Deadline:
    def __init__(self, max_time: Optional[float]):
        self.end = None if max_time is None else time.perf_counter() + max_time
        self.hit = False

    def expired(self) -> bool:
        if self.end is not None and time.perf_counter() > self.end:
            self.hit = True
        return self.hit


def _as_bed(bed: Union[Bed, Mapping[str, Any]]) -> Bed:
    if isinstance(bed, Bed):
        return bed
    if isinstance(bed, Mapping):
        return Bed(**bed)
    raise ValueError(f"Expected a Bed or a mapping with width, height and shape, got {bed!r}.")


def _as_groups(plant_groups: Iterable[Union[PlantGroup, Mapping[str, Any]]]) -> List[PlantGroup]:
    groups = [g if isinstance(g, PlantGroup) else PlantGroup(**g) for g in plant_groups]
    seen = set()
    for g in groups:
        if g.type in seen:
            raise ValueError(f"Duplicate plant type: {g.type!r}. Merge its plants into one group.")
        seen.add(g.type)
    return groups


class HierarchicalCirclePacker(BaseEstimator):
    """Two-level force-directed circle packing of plants into a bed

    Plants of one type are first gathered into a cluster meta-circle and the clusters are relaxed
    against each other (collision, companion/antagonist and boundary forces). The plants of every
    cluster are then seeded on a golden-angle spiral around its center and relaxed inside it. The
    layout is smoothed with a few Lloyd steps, de-overlapped, repaired by sequential placement when the
    overlaps are severe, topped up with unplaced plants, and finally checked against the bed outline.

    Parameters
    ----------
    intra_group_attraction: float (default 0.3)
        Spring strength between companion clusters and between a plant and its cluster center.

    inter_group_repulsion: float (default 0.2)
        Repulsion between antagonist clusters closer than their radii plus three paddings.

    collision_strength: float (default 0.8)
        Overlap force factor for clusters; plants use twice this value.

    boundary_force: float (default 0.5)
        Containment force of plants in their cluster. Clusters feel 0.3 times this value near the bed
        edge.

    cluster_padding: float (default 2.0)
        Gap kept between cluster meta-circles.

    min_spacing: float (default 0.5)
        Gap kept between the disks of two plants.

    max_iterations: int (default 500)
        Integration budget of the cluster relaxation and of each cluster's member relaxation.

    convergence_threshold: float (default 0.01)
        Energy change below which the cluster relaxation stops. Member relaxation uses 0.05 times this
        value.

    damping: float (default 0.85)
        Velocity damping factor in (0, 1].

    random_state: Optional[int] (default None)
        Seed of the generator used for the initial cluster positions and the random search steps. A
        fresh generator is created at the start of every ``pack`` call, so equal seeds give equal
        layouts.

    lloyd_iterations: int (default 2)
        Number of Lloyd smoothing steps after member packing. 0 disables smoothing.

    lloyd_radius: float (default 30.0)
        Neighbor radius of the Lloyd step.

    lloyd_step: float (default 0.15)
        Fraction of the way each plant moves toward its neighbors' weighted centroid.

    max_time: Optional[float] (default None)
        Wall-clock budget in seconds. Once exceeded, member relaxation of the remaining clusters, Lloyd
        smoothing and space filling are skipped; overlap resolution and bounds cleanup always run.

    verbose: bool (default False)
        Print a line per phase.

    Attributes
    ----------
    clusters_: ClusterState
        Clusters of the last run.

    arena_: CircleArena
        Placed disks of the last run.

    result_: PackingResult
        Result of the last run.
    """

    def __init__(
        self,
        intra_group_attraction: float = 0.3,
        inter_group_repulsion: float = 0.2,
        collision_strength: float = 0.8,
        boundary_force: float = 0.5,
        cluster_padding: float = 2.0,
        min_spacing: float = 0.5,
        max_iterations: int = 500,
        convergence_threshold: float = 0.01,
        damping: float = 0.85,
        random_state: Optional[int] = None,
        lloyd_iterations: int = 2,
        lloyd_radius: float = 30.0,
        lloyd_step: float = 0.15,
        max_time: Optional[float] = None,
        verbose: bool = False,
    ):
        self.intra_group_attraction = intra_group_attraction
        self.inter_group_repulsion = inter_group_repulsion
        self.collision_strength = collision_strength
        self.boundary_force = boundary_force
        self.cluster_padding = cluster_padding
        self.min_spacing = min_spacing
        self.max_iterations = max_iterations
        self.convergence_threshold = convergence_threshold
        self.damping = damping
        self.random_state = random_state
        self.lloyd_iterations = lloyd_iterations
        self.lloyd_radius = lloyd_radius
        self.lloyd_step = lloyd_step
        self.max_time = max_time
        self.verbose = verbose

        self.bed_: Optional[Bed] = None
        self.requests_: Optional[RequestTable] = None
        self.clusters_: Optional[ClusterState] = None
        self.arena_: Optional[CircleArena] = None
        self.result_: Optional[PackingResult] = None

    def _check_params(self):
        for name in (
            "intra_group_attraction",
            "inter_group_repulsion",
            "collision_strength",
            "boundary_force",
            "cluster_padding",
            "min_spacing",
        ):
            value = getattr(self, name)
            if not np.isfinite(value) or value < 0:
                raise ValueError(f"{name} should be a non-negative number, got {value}.")
        if not 0 < self.damping <= 1:
            raise ValueError(f"damping should be in (0, 1], got {self.damping}.")
        if int(self.max_iterations) < 1:
            raise ValueError(f"max_iterations should be >= 1, got {self.max_iterations}.")
        if not self.convergence_threshold > 0:
            raise ValueError(
                f"convergence_threshold should be positive, got {self.convergence_threshold}."
            )
        if int(self.lloyd_iterations) < 0:
            raise ValueError(f"lloyd_iterations should be >= 0, got {self.lloyd_iterations}.")
        if not self.lloyd_radius > 0:
            raise ValueError(f"lloyd_radius should be positive, got {self.lloyd_radius}.")
        if not 0 <= self.lloyd_step <= 1:
            raise ValueError(f"lloyd_step should be in [0, 1], got {self.lloyd_step}.")
        if self.max_time is not None and not self.max_time > 0:
            raise ValueError(f"max_time should be positive or None, got {self.max_time}.")

    def _log(self, message: str):
        if self.verbose:
            print(message)

    def pack(
        self,
        bed: Union[Bed, Mapping[str, Any]],
        plant_groups: Sequence[Union[PlantGroup, Mapping[str, Any]]],
    ) -> PackingResult:
        """Pack the plant groups into the bed.

        Parameters
        ----------
        bed: Bed or mapping
            The bed, or a mapping of ``Bed`` fields.

        plant_groups: sequence of PlantGroup or mappings
            One group per plant type; type keys must be unique. Groups without plants create no cluster.

        Returns
        -------
        result: PackingResult
            Placements, statistics, violation report and cluster metadata. Plants that do not fit are
            left out and show up in the fill rate.
        """
        start = time.perf_counter()
        self._check_params()
        bed = _as_bed(bed)
        groups = _as_groups(plant_groups)
        # private generator; None must not draw from numpy's global stream
        if isinstance(self.random_state, np.random.RandomState):
            random_state = self.random_state
        else:
            random_state = np.random.RandomState(self.random_state)
        deadline = _Deadline(self.max_time)
        max_iterations = int(self.max_iterations)

        # ---- Level 1: clusters ----
        requests = RequestTable.from_groups(groups)
        clusters = create_clusters(groups, requests, bed, random_state)
        iterations, converged = relax_clusters(
            clusters,
            bed,
            collision_strength=self.collision_strength,
            cluster_padding=self.cluster_padding,
            intra_group_attraction=self.intra_group_attraction,
            inter_group_repulsion=self.inter_group_repulsion,
            boundary_force=self.boundary_force,
            damping=self.damping,
            max_iterations=max_iterations,
            convergence_threshold=self.convergence_threshold,
            should_stop=deadline.expired,
        )
        if converged:
            self._log(f"[cluster] {len(clusters)} clusters converged after {iterations} iterations")
        else:
            self._log(f"[cluster] {len(clusters)} clusters stopped after {iterations} iterations")

        # ---- Level 2: members ----
        arenas = []
        member_iterations: Dict[str, int] = {}
        member_converged: Dict[str, bool] = {}
        for c in range(len(clusters)):
            arena_c, it, conv = pack_cluster_members(
                clusters,
                c,
                requests,
                bed,
                relax=not deadline.expired(),
                min_spacing=self.min_spacing,
                collision_strength=self.collision_strength,
                intra_group_attraction=self.intra_group_attraction,
                boundary_force=self.boundary_force,
                damping=self.damping,
                max_iterations=max_iterations,
                convergence_threshold=self.convergence_threshold,
                should_stop=deadline.expired,
            )
            arenas.append(arena_c)
            member_iterations[clusters.types[c]] = it
            member_converged[clusters.types[c]] = conv
        arena = CircleArena.concat(arenas)
        self._log(f"[members] {len(arena)} plants seeded in {len(clusters)} clusters")

        # ---- refinement ----
        lloyd_done = 0
        if len(arena) and self.lloyd_iterations > 0 and not deadline.expired():
            lloyd_done = lloyd_relaxation(
                arena,
                bed,
                iterations=int(self.lloyd_iterations),
                neighbor_radius=self.lloyd_radius,
                step=self.lloyd_step,
                min_spacing=self.min_spacing,
            )
            self._log(f"[refine] {lloyd_done} Lloyd iterations")

        residual, passes = final_collision_resolution(arena, bed, min_spacing=self.min_spacing)
        self._log(f"[refine] {residual} collisions left after {passes} passes")

        fallback = None
        if needs_greedy_fallback(residual, len(arena)):
            fallback = "greedy"
            n_before = len(arena)
            arena, failed = greedy_placement(arena, clusters, bed, min_spacing=self.min_spacing)
            self._log(f"[fallback] greedy placement kept {len(arena)}/{n_before} plants")
            if len(arena) == 0 and len(failed):
                fallback = "emergency"
                warnings.warn(
                    f"Greedy placement could not fit any of {len(failed)} plants, "
                    "running emergency placement around the bed center.",
                    RuntimeWarning,
                )
                arena = emergency_placement(
                    failed, bed, random_state, min_spacing=self.min_spacing
                )
                self._log(f"[fallback] emergency placement kept {len(arena)}/{len(failed)} plants")

        # ---- space fill ----
        space_fill_added = rebalance_added = 0
        if len(clusters) and not deadline.expired():
            filler = SpaceFiller(
                arena, requests, clusters, bed, random_state, self.min_spacing, self.verbose
            )
            space_fill_added = filler.space_fill()
            rebalance_added = filler.balance_ratios(target_ratios(groups), space_fill_added)
            arena = filler.arena
            self._log(f"[fill] added {space_fill_added} + {rebalance_added} plants")

        # ---- cleanup ----
        arena, clamped, removed = bounds_cleanup(arena, bed, min_spacing=self.min_spacing)
        self._log(f"[cleanup] clamped {clamped}, removed {removed}")
        if deadline.hit:
            self._log("[cleanup] time budget exceeded, optional phases were skipped")

        result = build_result(
            arena,
            requests,
            clusters,
            groups,
            bed,
            min_spacing=self.min_spacing,
            diagnostics=dict(
                iterations=iterations,
                converged=converged,
                member_iterations=member_iterations,
                member_converged=member_converged,
                collision_passes=passes,
                fallback=fallback,
                lloyd_iterations=lloyd_done,
                space_fill_added=space_fill_added,
                rebalance_added=rebalance_added,
                clamped=clamped,
                removed=removed,
                timed_out=deadline.hit,
                elapsed=time.perf_counter() - start,
            ),
        )

        self.bed_ = bed
        self.requests_ = requests
        self.clusters_ = clusters
        self.arena_ = arena
        self.result_ = result
        return result

    def pack_plants(
        self,
        bed: Union[Bed, Mapping[str, Any]],
        plants: Iterable[Mapping[str, Any]],
        companions: Optional[Mapping[str, Sequence[str]]] = None,
        antagonists: Optional[Mapping[str, Sequence[str]]] = None,
    ) -> PackingResult:
        """Group flat plant specs by type (see ``group_plants_by_type``) and pack them."""
        return self.pack(bed, group_plants_by_type(plants, companions, antagonists))

    def get_state(self) -> Dict[str, Any]:
        """Clusters, placed disks and configuration of the last run, for inspection and plotting."""
        return {
            "bed": self.bed_,
            "clusters": self.clusters_,
            "circles": self.arena_,
            "config": self.get_params(),
        }

    def reset(self):
        """Forget the state of the last run. Parameters are kept."""
        self.bed_ = None
        self.requests_ = None
        self.clusters_ = None
        self.arena_ = None
        self.result_ = None
        return self
