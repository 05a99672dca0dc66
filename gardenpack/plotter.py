from typing import Optional, Tuple

import matplotlib.pyplot as plt
from matplotlib.patches import Circle

from gardenpack.geometry import shape_outline
from gardenpack.models import Bed, PackingResult


def format_time(seconds):
    """Format a duration in seconds into hr:min:sec or ms."""
    if seconds < 1:
        return f"{int(seconds * 1000)} ms"
    h = int(seconds // 3600)
    m = int((seconds % 3600) // 60)
    s = int(seconds % 60)
    if h > 0:
        return f"{h}h {m}m {s}s"
    elif m > 0:
        return f"{m}m {s}s"
    else:
        return f"{s}s"


def plot_packing(
    result: PackingResult,
    bed: Bed,
    *,
    title: Optional[str] = None,
    draw_clusters: bool = True,
    draw_labels: bool = False,
    label_limit: int = 150,  # avoid clutter
    figsize: Tuple[float, float] = (8, 8),
    cmap: str = "tab20",
    ax=None,
):
    """
    Draw the bed outline, the cluster meta-circles (dashed) and the plant disks, colored by type.

    Returns the (figure, axes) pair; nothing is shown, call ``plt.show()`` or ``fig.savefig``.
    """
    if ax is None:
        fig, ax = plt.subplots(figsize=figsize)
    else:
        fig = ax.figure

    outline = shape_outline(bed)
    ax.plot(outline[:, 0], outline[:, 1], color="k", linewidth=1.6)

    # --- colors per type, in cluster order ---
    cmap_obj = plt.get_cmap(cmap)
    types = [c.type for c in result.clusters]
    color_of_type = {t: cmap_obj(i % cmap_obj.N) for i, t in enumerate(types)}

    if draw_clusters:
        for c in result.clusters:
            ax.add_patch(
                Circle(
                    (c.x, c.y),
                    c.radius,
                    fill=False,
                    linestyle="--",
                    linewidth=1.2,
                    edgecolor=color_of_type[c.type],
                    alpha=0.6,
                )
            )

    labels_drawn = 0
    for p in result.placements:
        color = color_of_type.get(p.type, "gray")
        ax.add_patch(
            Circle((p.x, p.y), p.radius, facecolor=color, edgecolor="k", linewidth=0.6, alpha=0.75)
        )
        if draw_labels and labels_drawn < label_limit:
            ax.text(p.x, p.y, p.type, ha="center", va="center", fontsize=7)
            labels_drawn += 1

    if title is None:
        stats = result.stats
        title = (
            f"{stats.placed}/{stats.requested} plants, {len(result.clusters)} clusters, "
            f"density {stats.packing_density:.1%} ({format_time(stats.elapsed)})"
        )

    pad_x = 0.06 * bed.width
    pad_y = 0.06 * bed.height
    ax.set_xlim(-pad_x, bed.width + pad_x)
    ax.set_ylim(-pad_y, bed.height + pad_y)
    ax.set_aspect("equal", "box")
    ax.grid(True, linestyle=":", alpha=0.35)
    ax.set_title(title)
    ax.set_xlabel("x")
    ax.set_ylabel("y")
    fig.tight_layout()
    return fig, ax
