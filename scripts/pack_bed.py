import json
from pathlib import Path
from typing import Optional, Tuple

import matplotlib.pyplot as plt
import typer

from gardenpack import Bed, BedShape, HierarchicalCirclePacker, group_plants_by_type
from gardenpack.plotter import format_time, plot_packing


def main(
        plan_path: Path,
        output_path: Optional[Path] = None,
        plot_path: Optional[Path] = None,
        shape: Optional[BedShape] = None,
        random_state: Optional[int] = None,
        min_spacing: float = 0.5,
        max_iterations: int = 500,
        max_time: Optional[float] = None,
        figsize: Tuple[int, int] = (8, 8),
        verbose: bool = False
):
    """Pack the plan in PLAN_PATH: a JSON object with a `bed` ({width, height, shape}), a `plants` list of
    {type, size or radius, count, priority, variety} and optional `companions` / `antagonists` maps."""
    plan = json.loads(plan_path.read_text())
    bed_spec = dict(plan['bed'])
    if shape is not None:
        bed_spec['shape'] = shape
    bed = Bed(**bed_spec)
    groups = group_plants_by_type(
        plan['plants'],
        companions=plan.get('companions'),
        antagonists=plan.get('antagonists'))

    packer = HierarchicalCirclePacker(
        random_state=random_state,
        min_spacing=min_spacing,
        max_iterations=max_iterations,
        max_time=max_time,
        verbose=verbose
    )
    result = packer.pack(bed, groups)

    stats = result.stats
    print(f'Placed {stats.placed}/{stats.requested} plants in {format_time(stats.elapsed)}, '
          f'density {stats.packing_density:.1%}, '
          f'{len(result.violations.collisions)} collisions, {len(result.violations.bounds)} out of bounds.')
    print(result.type_counts_frame().to_string(float_format='{:.2f}'.format))

    if output_path is not None:
        output_path.write_text(json.dumps(result.to_dict(), indent=2))
        print(f'Wrote: {output_path}')

    if plot_path is not None:
        fig, _ = plot_packing(result, bed, figsize=figsize)
        fig.savefig(plot_path)
        plt.close(fig)
        print(f'Wrote: {plot_path}')


if __name__ == '__main__':
    typer.run(main)
