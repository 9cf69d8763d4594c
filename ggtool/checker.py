"""Checking cached tools for newer releases and reinstalling them."""

from __future__ import annotations

import logging
import shutil
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path

from ggtool.config import GgConfig
from ggtool.executor import (
    META_FILE_NAME,
    AppInput,
    Executor,
    ExecutorCmd,
    ExecutorError,
    GgMeta,
    cache_base_dir,
    prep,
)
from ggtool.progress import create_progress
from ggtool.versions import GgVersion, GgVersionReq

log = logging.getLogger(__name__)

ExecutorFactory = Callable[[ExecutorCmd], "Executor | None"]

_MAX_CONCURRENT_CHECKS = 5


@dataclass
class UpdateInfo:
    """The outcome of comparing an installed tool with its newest release."""

    tool_name: str
    version_selector: str
    current_version: str | None
    latest_version: str | None
    needs_update: bool
    is_major_update: bool
    path: Path
    executor: Executor

    @property
    def display_name(self) -> str:
        return f"{self.tool_name}{self.version_selector}"


def _version_rank(version: GgVersion | None) -> tuple:
    # A missing version ranks below every known one.
    if version is None:
        return (0,)
    return (1, version.to_version())


def check_tool_update(
    meta: GgMeta, path: Path, input: AppInput, factory: ExecutorFactory
) -> UpdateInfo | None:
    """Compare the installed version in ``meta`` with the best available download."""
    log.info(
        "Checking tool update for cmd: %s with version: %s", meta.cmd.cmd, meta.cmd.version
    )
    executor = factory(meta.cmd)
    if executor is None:
        return None
    log.info("Created executor for: %s (cmd was: %s)", executor.name, meta.cmd.cmd)

    urls = executor.get_download_urls(input)
    log.info("Got %d urls for %s (cmd: %s)", len(urls), executor.name, meta.cmd.cmd)
    matches = executor.get_url_matches(urls, input)
    log.info("Got %d url matches for %s", len(matches), executor.name)
    if not matches:
        return None
    best = matches[0]
    log.debug("Match for %s: %s", executor.name, best)

    current = meta.download.version
    latest = best.version
    needs_update = _version_rank(latest) > _version_rank(current)
    is_major_update = (
        current is not None
        and latest is not None
        and latest.to_version().major > current.to_version().major
    )
    return UpdateInfo(
        tool_name=executor.name,
        version_selector=meta.cmd.to_version_selector(),
        current_version=None if current is None else str(current),
        latest_version=None if latest is None else str(latest),
        needs_update=needs_update,
        is_major_update=is_major_update,
        path=Path(path),
        executor=executor,
    )


def should_include_update(update_info: UpdateInfo, allow_major: bool) -> bool:
    """True if an update is due and not held back as a major one."""
    return update_info.needs_update and (allow_major or not update_info.is_major_update)


def get_all_tool_metas() -> list[tuple[GgMeta, Path]]:
    """Every readable tool metadata file in the cache, with its path."""
    metas: list[tuple[GgMeta, Path]] = []
    root = Path(cache_base_dir())
    for path in sorted(root.glob(f"**/{META_FILE_NAME}")):
        log.info("Reading meta from %s", path)
        try:
            content = path.read_text(encoding="utf-8")
        except OSError:
            continue
        try:
            meta = GgMeta.from_json(content)
        except ValueError as error:
            log.info("Failed to parse meta from %s: %s", path, error)
            continue
        log.info(
            "Successfully parsed meta for: %s with version: %s", meta.cmd.cmd, meta.cmd.version
        )
        metas.append((meta, path))
    log.info("Found %d total metas", len(metas))
    return metas


def _reinstall(info: UpdateInfo, input: AppInput, name: str) -> None:
    try:
        shutil.rmtree(info.path.parent)
    except OSError:
        print(f"Unable to update {name}")
        return
    try:
        prep(info.executor, input, create_progress())
    except ExecutorError as error:
        log.info("Preparing %s failed: %s", name, error)
    print(f"Successfully updated {name}")


def _status(info: UpdateInfo, allow_major: bool, force: bool) -> str:
    if force:
        return "Will force update"
    if not info.needs_update:
        return "Up to date"
    if info.is_major_update and not allow_major:
        return "Major update available (use --major to include)"
    return "Update available"


def check_or_update_all(
    input: AppInput,
    should_update: bool,
    allow_major: bool,
    force: bool,
    factory: ExecutorFactory,
) -> list[UpdateInfo]:
    """Report on every cached tool and, if asked, reinstall those due an update.

    Returns the tools selected for update.
    """
    metas = get_all_tool_metas()
    if not metas:
        print("No cached tools found.")
        return []

    print("Checking for updates...")
    with ThreadPoolExecutor(max_workers=_MAX_CONCURRENT_CHECKS) as pool:
        results = list(
            pool.map(lambda item: check_tool_update(item[0], item[1], input, factory), metas)
        )
    update_infos = [info for info in results if info is not None]

    if force:
        selected = list(update_infos)
    else:
        selected = [info for info in update_infos if should_include_update(info, allow_major)]

    print()
    grouped: dict[str, list[UpdateInfo]] = {}
    for info in update_infos:
        grouped.setdefault(info.tool_name, []).append(info)
    for infos in grouped.values():
        for info in infos:
            current = info.current_version or "NA"
            latest = info.latest_version or "NA"
            print(
                f"{info.display_name}: Current: {current}, Latest: {latest} - "
                f"{_status(info, allow_major, force)}"
            )

    if not selected:
        print("\nAll tools are up to date!")
        return selected

    if not should_update:
        names = ", ".join(info.tool_name for info in selected)
        print(f"\nUpdates available for: {names}")
        print("Run 'update -u' to update all tools, or 'update <tool> -u' for a specific tool.")
        print("For more options, run 'help'.")
    else:
        for info in selected:
            print(f"Updating {info.tool_name}...")
            _reinstall(info, input, info.tool_name)
    return selected


def _meta_matches(
    meta: GgMeta, tool_name: str, config_version: str | None, factory: ExecutorFactory
) -> bool:
    executor = factory(meta.cmd)
    if executor is None:
        return False
    name_matches = executor.name == tool_name
    if config_version is not None:
        requirement = GgVersionReq.new(config_version)
        if requirement is not None and meta.download.version is not None:
            return name_matches and requirement.to_version_req().matches(
                meta.download.version.to_version()
            )
    return name_matches


def check_or_update_tool(
    input: AppInput,
    tool_name: str,
    should_update: bool,
    allow_major: bool,
    force: bool,
    config: GgConfig,
    factory: ExecutorFactory,
) -> UpdateInfo | None:
    """Report on one cached tool and, if asked, reinstall it.

    Returns what was found about the tool, or None if it could not be checked.
    """
    config_version = config.dependencies.get(tool_name)
    found = next(
        (
            (meta, path)
            for meta, path in get_all_tool_metas()
            if _meta_matches(meta, tool_name, config_version, factory)
        ),
        None,
    )
    if found is None:
        print(
            f"Tool '{tool_name}' not found in cache. "
            f"Install it first by running: gg {tool_name}"
        )
        return None

    info = check_tool_update(found[0], found[1], input, factory)
    if info is None:
        print(f"Unable to check updates for {tool_name}")
        return None

    current = info.current_version or "NA"
    latest = info.latest_version or "NA"
    if should_update and (force or should_include_update(info, allow_major)):
        print(f"Force updating {tool_name}..." if force else f"Updating {tool_name}...")
        _reinstall(info, input, tool_name)
    elif not info.needs_update:
        print(f"{tool_name}: Already up to date (version {current})")
    elif info.is_major_update and not allow_major:
        print(
            f"{tool_name}: Current: {current}, Latest: {latest} - "
            "Major update available (use --major to include)"
        )
    else:
        print(f"{tool_name}: Current: {current}, Latest: {latest} - Update available")
        print(f"Run 'update {tool_name} -u' to update.")
    return info