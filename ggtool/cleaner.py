"""Interactive removal of the whole tool cache."""

from __future__ import annotations

import shutil
import stat
from pathlib import Path

from ggtool.executor import cache_base_dir


def _is_dir(path: Path) -> bool | None:
    try:
        return stat.S_ISDIR(path.stat().st_mode)
    except OSError:
        return None


def clean_cache() -> bool:
    """Show what the cache holds, ask for confirmation and delete it.

    Returns True if the cache was deleted.
    """
    base = cache_base_dir()
    root = Path(base)
    if not root.exists():
        print(f"Cache directory does not exist: {base}")
        return False

    print(f"Cache directory: {base}")
    print("Contents to be deleted:")
    for entry in sorted(root.iterdir()):
        is_dir = _is_dir(entry)
        if is_dir is None:
            continue
        print(f"  📁 {entry.name}/" if is_dir else f"  📄 {entry.name}")

    total_size = 0
    file_count = 0
    dir_count = 0
    for entry in root.rglob("*"):
        try:
            info = entry.stat()
        except OSError:
            continue
        if stat.S_ISDIR(info.st_mode):
            dir_count += 1
        else:
            file_count += 1
            total_size += info.st_size

    if file_count == 0 and dir_count <= 1:
        print("  (empty)")
    else:
        megabytes = total_size / 1024.0 / 1024.0
        print(
            f"\nTotal: {file_count} files in {max(dir_count - 1, 0)} directories, "
            f"{megabytes:.1f} MB"
        )

    try:
        answer = input("\nAre you sure you want to delete the entire cache? (y/N): ")
    except EOFError:
        print("Cache cleaning cancelled.")
        return False

    if answer.strip().lower() not in ("y", "yes"):
        print("Cache cleaning cancelled.")
        return False

    print("Deleting cache...")
    try:
        shutil.rmtree(root)
    except OSError as error:
        print(f"Error cleaning cache: {error}")
        return False
    print("Cache cleaned successfully!")
    return True