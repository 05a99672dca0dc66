"""Adding requested-but-unplaced plants into leftover space, steered by priority-derived type ratios."""
from typing import Dict, List, Optional, Sequence

import numpy as np

from gardenpack.geometry import clamp_to_shape, golden_spiral, inside_shape
from gardenpack.models import Bed, PlantGroup
from gardenpack.refinement import free_candidates
from gardenpack.state import CircleArena, ClusterState, RequestTable

SPIRAL_ATTEMPTS = 400
SPIRAL_STEP = 2.5
GRID_SIZE = 20
RANDOM_ATTEMPTS = 200
SPACING_RELAX = 0.8
CLOSE_ENOUGH = 3.0
MAX_FILL_ROUNDS = 30
MAX_DEVIATION = 0.25
MAX_REBALANCE = 5
MAX_BALANCE_ITERATIONS = 20
BALANCE_DEFICIT = 0.05


def target_ratios(groups: Sequence[PlantGroup]) -> Dict[str, float]:
    """Share of each non-empty group: its mean priority over the sum of mean priorities."""
    weights = {g.type: g.mean_priority for g in groups if g.plants}
    total = sum(weights.values())
    if total <= 0:
        return {}
    return {t: w / total for t, w in weights.items()}


def find_space(
    radius: float,
    target,
    arena: CircleArena,
    bed: Bed,
    random_state: np.random.RandomState,
    *,
    min_spacing: float,
) -> Optional[np.ndarray]:
    """Free center for a disk of ``radius`` near ``target``, or None.

    Candidates are tried in order: a golden-angle spiral around the target, a coarse grid over the whole
    bed, then uniform random samples. The first free candidate within three radii of the target wins;
    otherwise the free candidate closest to the target.
    """
    target = np.asarray(target, float)
    spiral = golden_spiral(target, SPIRAL_ATTEMPTS, SPIRAL_STEP)
    g = np.arange(GRID_SIZE * GRID_SIZE)
    grid = np.stack(
        [(g % GRID_SIZE) / GRID_SIZE * bed.width, (g // GRID_SIZE) / GRID_SIZE * bed.height], axis=1
    )
    u = random_state.random_sample((RANDOM_ATTEMPTS, 2))
    rand = np.stack(
        [radius + u[:, 0] * (bed.width - 2 * radius), radius + u[:, 1] * (bed.height - 2 * radius)],
        axis=1,
    )
    cand = np.vstack([spiral, grid, rand])

    valid = free_candidates(
        cand, radius, arena.pos, arena.radius, bed, min_spacing * SPACING_RELAX
    )
    if not np.any(valid):
        return None
    dist = np.linalg.norm(cand - target, axis=1)
    close = np.flatnonzero(valid & (dist < CLOSE_ENOUGH * radius))
    if len(close):
        return cand[close[0]]
    idx = np.flatnonzero(valid)
    return cand[idx[np.argmin(dist[idx])]]


class SpaceFiller:
    """Grows one packing's arena with the requested plants that did not make it in.

    Only requested instances are ever added, so the per-type count never exceeds the request.
    """

    def __init__(
        self,
        arena: CircleArena,
        requests: RequestTable,
        clusters: ClusterState,
        bed: Bed,
        random_state: np.random.RandomState,
        min_spacing: float,
        verbose: bool = False,
    ):
        self.arena = arena
        self.requests = requests
        self.clusters = clusters
        self.bed = bed
        self.random_state = random_state
        self.min_spacing = min_spacing
        self.verbose = verbose

    def type_counts(self) -> Dict[str, int]:
        counts = {t: 0 for t in self.clusters.types}
        for c in self.arena.cluster:
            counts[self.clusters.types[c]] += 1
        return counts

    def current_shares(self) -> Dict[str, float]:
        counts = self.type_counts()
        total = sum(counts.values())
        return {t: (n / total if total else 0.0) for t, n in counts.items()}

    def next_unplaced(self, c: int) -> Optional[int]:
        placed = set(self.arena.request.tolist())
        members = self.clusters.members[c]
        order = np.lexsort((-self.requests.radius[members], -self.requests.priority[members]))
        for req in members[order]:
            if int(req) not in placed:
                return int(req)
        return None

    def try_add_plant(self, c: int) -> bool:
        """Place the next unplaced plant of cluster ``c``; True when it went in."""
        req = self.next_unplaced(c)
        if req is None:
            return False
        radius = float(self.requests.radius[req])
        xy = find_space(
            radius,
            self.clusters.pos[c],
            self.arena,
            self.bed,
            self.random_state,
            min_spacing=self.min_spacing,
        )
        if xy is None:
            return False
        xy = clamp_to_shape(self.bed, xy, radius)
        if not inside_shape(self.bed, xy, radius):
            return False
        self.arena.append(req, c, xy, radius, self.requests.priority[req])
        return True

    def space_fill(self, max_rounds: int = MAX_FILL_ROUNDS) -> int:
        """Rounds of one addition attempt per type, larger plants first, until a round adds nothing."""
        order = sorted(
            range(len(self.clusters)),
            key=lambda c: -float(np.mean(self.requests.radius[self.clusters.members[c]])),
        )
        added = 0
        for rnd in range(max_rounds):
            added_in_round = sum(self.try_add_plant(c) for c in order)
            if added_in_round == 0:
                break
            added += added_in_round
            if self.verbose:
                print(f"[fill] round {rnd + 1}: added {added_in_round} plant(s)")
        return added

    def balance_ratios(self, targets: Dict[str, float], filled: int) -> int:
        """Top up under-represented types after filling.

        When filling added nothing, fall back to :meth:`balance_to_target_ratios`. Otherwise act only
        when some type deviates from its target share by more than 25 % (relative), adding at most 5
        plants, one per under-represented type, largest deficit first.
        """
        if filled == 0:
            return self.balance_to_target_ratios(targets)

        shares = self.current_shares()
        deviation = {
            t: abs(shares.get(t, 0.0) - target) / target for t, target in targets.items() if target > 0
        }
        if not deviation or max(deviation.values()) <= MAX_DEVIATION:
            return 0

        under: List[str] = sorted(
            (t for t, target in targets.items() if shares.get(t, 0.0) < target),
            key=lambda t: -(targets[t] - shares.get(t, 0.0)),
        )
        added = 0
        for t in under:
            if added >= MAX_REBALANCE:
                break
            c = self.clusters.index_of_type(t)
            if c is not None and self.try_add_plant(c):
                added += 1
                if self.verbose:
                    print(f"[fill] added 1 {t} (under-represented)")
        return added

    def balance_to_target_ratios(
        self, targets: Dict[str, float], max_iterations: int = MAX_BALANCE_ITERATIONS
    ) -> int:
        """Repeatedly add the type with the largest share deficit while it exceeds 5 points."""
        added = 0
        for _ in range(max_iterations):
            shares = self.current_shares()
            deficits = {t: target - shares.get(t, 0.0) for t, target in targets.items()}
            if not deficits:
                break
            worst = max(deficits, key=deficits.get)
            if deficits[worst] < BALANCE_DEFICIT:
                break
            c = self.clusters.index_of_type(worst)
            if c is None or not self.try_add_plant(c):
                break
            added += 1
        return added
