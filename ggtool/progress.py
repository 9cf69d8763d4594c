"""Progress bar used while downloading and unpacking tools."""

from __future__ import annotations

from tqdm import tqdm

_BAR_FORMAT = (
    "{desc}{postfix} [{elapsed}] [{bar}] {n_fmt}/{total_fmt} ({remaining})"
)


def create_progress() -> tqdm:
    """Create a byte-counting progress bar, initially one unit long.

    The tool name goes in the description and the current step
    ("Downloading", "Untar", ...) in the postfix.
    """
    return tqdm(
        total=1,
        unit="B",
        unit_scale=True,
        unit_divisor=1024,
        bar_format=_BAR_FORMAT,
        ascii="->#",
        dynamic_ncols=True,
        leave=True,
    )