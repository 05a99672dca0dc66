import concurrent.futures
import os
from typing import Any, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
from sklearn.utils import check_random_state
from tqdm import tqdm

from gardenpack.models import Bed, PackingResult, PlantGroup
from gardenpack.packer import HierarchicalCirclePacker

Job = Tuple[Union[Bed, Mapping[str, Any]], Sequence[Union[PlantGroup, Mapping[str, Any]]]]


def bed_seeds(random_state: Optional[int], n_beds: int) -> List[Optional[int]]:
    """One seed per bed drawn from ``random_state``; all None when unseeded."""
    if random_state is None:
        return [None] * n_beds
    rng = check_random_state(random_state)
    return [int(s) for s in rng.randint(np.iinfo(np.int32).max, size=n_beds)]


def pack_beds(
    jobs: Sequence[Job],
    n_jobs: Optional[int] = None,
    random_state: Optional[int] = None,
    verbose: bool = False,
    **params,
) -> List[PackingResult]:
    """Pack independent beds concurrently, one packer per bed.

    Parameters
    ----------
    jobs: sequence of (bed, plant_groups)
        The beds and their requests.

    n_jobs: Optional[int] (default None)
        Number of worker threads; defaults to min(number of beds, CPU count).

    random_state: Optional[int] (default None)
        Master seed. Bed ``i`` is packed with ``bed_seeds(random_state, len(jobs))[i]``, so a result
        equals the one of a serial ``HierarchicalCirclePacker(random_state=seed).pack`` call.

    params:
        Any other ``HierarchicalCirclePacker`` parameter, shared by all beds.

    Returns
    -------
    results: list of PackingResult, in job order.
    """
    if not jobs:
        return []
    seeds = bed_seeds(random_state, len(jobs))
    workers = n_jobs or min(len(jobs), os.cpu_count() or 1)

    def run(i: int) -> PackingResult:
        bed, groups = jobs[i]
        packer = HierarchicalCirclePacker(random_state=seeds[i], **params)
        return packer.pack(bed, groups)

    results: List[Optional[PackingResult]] = [None] * len(jobs)
    with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
        futures = {executor.submit(run, i): i for i in range(len(jobs))}
        done = concurrent.futures.as_completed(futures)
        if verbose:
            done = tqdm(done, total=len(futures), desc="Packing beds")
        for future in done:
            results[futures[future]] = future.result()
    return results
