"""
Visualization module for globalbr.

This module provides latitude-level cross sections of the merged bromine
fields with the tropopause overlaid.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Literal

import matplotlib.pyplot as plt
import numpy as np
from matplotlib import cm

if TYPE_CHECKING:
    from globalbr.merge import BromineFields

logger = logging.getLogger(__name__)


# =============================================================================
# Color Maps and Styles
# =============================================================================

BR_CMAP = cm.viridis
BRO_CMAP = cm.magma

SPECIES_LABELS = {
    "br": "Br (pptv)",
    "bro": "BrO (pptv)",
}


# =============================================================================
# Static Plotting Functions
# =============================================================================


def plot_zonal_mean(
    fields: BromineFields,
    species: Literal["br", "bro"] = "br",
    output_path: Path | None = None,
    figsize: tuple[float, float] = (8, 5),
    dpi: int = 150,
) -> plt.Figure:
    """
    Plot the zonal mean of a merged field against latitude and level.

    Parameters
    ----------
    fields : BromineFields
        Result of a retrieval.
    species : {"br", "bro"}
        Which merged field to plot.
    output_path : Path, optional
        If provided, save figure to this path.
    figsize : tuple
        Figure size in inches.
    dpi : int
        Figure resolution.

    Returns
    -------
    Figure
        Matplotlib figure object.
    """
    data = fields.br if species == "br" else fields.bro
    cmap = BR_CMAP if species == "br" else BRO_CMAP

    # (lon, lat, lev) -> (lev, lat)
    zonal = data.mean(axis=0).T
    ny, nz = data.shape[1], data.shape[2]

    fig, ax = plt.subplots(figsize=figsize)

    im = ax.imshow(
        zonal,
        origin="lower",
        cmap=cmap,
        aspect="auto",
        extent=[0.5, ny + 0.5, 0.5, nz + 0.5],
    )
    plt.colorbar(im, ax=ax, label=SPECIES_LABELS[species])

    # First stratospheric level, drawn at its lower edge
    tpl_zonal = fields.tropopause_level.mean(axis=0)
    ax.plot(np.arange(1, ny + 1), tpl_zonal - 0.5, color="white", linewidth=1.5,
            linestyle="--", label="Tropopause")
    ax.legend(loc="upper right")

    ax.set_xlabel("Latitude index")
    ax.set_ylabel("Level")
    ax.set_title(
        f"Zonal mean {SPECIES_LABELS[species]}, month {fields.month:02d} "
        f"({fields.source_name} / GMI)"
    )

    plt.tight_layout()

    if output_path:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(output_path, dpi=dpi, bbox_inches="tight")
        logger.info(f"Saved zonal mean plot to {output_path}")

    return fig
