"""Tools that can be downloaded into the cache and run, and how a download is chosen."""

from __future__ import annotations

import json
import logging
import os
import re
import shutil
import subprocess
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import ClassVar

from tqdm import tqdm

from ggtool.archive import Archive
from ggtool.progress import create_progress
from ggtool.versions import GgVersion, GgVersionReq, VersionReq

log = logging.getLogger(__name__)

DEFAULT_CACHE_DIR = ".cache/gg"
META_FILE_NAME = "gg-meta.json"
VARIANT_ANY = "any"


class ExecutorError(Exception):
    """Raised when a tool cannot be prepared, located or started."""


class Os(Enum):
    """Operating system a download is built for."""

    ANY = "any"
    WINDOWS = "windows"
    LINUX = "linux"
    MAC = "mac"


class Arch(Enum):
    """CPU architecture a download is built for."""

    ANY = "any"
    X86_64 = "x86_64"
    ARM64 = "arm64"
    ARMV7 = "armv7"


@dataclass(frozen=True)
class Target:
    """The platform tools are wanted for."""

    os: Os
    arch: Arch
    variant: str | None = None


@dataclass
class AppInput:
    """The target platform and the arguments to hand to the tool."""

    target: Target
    app_args: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class AppPath:
    """Where a prepared tool is installed."""

    install_dir: Path


def _enum_or_none(enum: type[Enum], value: object) -> Enum | None:
    return None if value is None else enum(value)


@dataclass
class Download:
    """One downloadable release file."""

    download_url: str
    version: GgVersion | None = None
    os: Os | None = None
    arch: Arch | None = None
    variant: str | None = None
    tags: set[str] = field(default_factory=set)

    @classmethod
    def new(cls, download_url: str, version: str, variant: str | None = None) -> Download:
        """A platform independent download with a leniently parsed version."""
        return cls(
            download_url=download_url,
            version=GgVersion.new(version),
            os=Os.ANY,
            arch=Arch.ANY,
            variant=variant,
        )

    def to_dict(self) -> dict:
        return {
            "version": None if self.version is None else self.version.value,
            "tags": sorted(self.tags),
            "download_url": self.download_url,
            "arch": None if self.arch is None else self.arch.value,
            "os": None if self.os is None else self.os.value,
            "variant": self.variant,
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> Download:
        version = data.get("version")
        return cls(
            download_url=data["download_url"],
            version=None if version is None else GgVersion(version),
            os=_enum_or_none(Os, data.get("os")),
            arch=_enum_or_none(Arch, data.get("arch")),
            variant=data.get("variant"),
            tags=set(data.get("tags", [])),
        )


@dataclass
class ExecutorCmd:
    """A requested tool with its version requirement, distribution and tag filters."""

    cmd: str
    version: GgVersionReq | None = None
    distribution: str | None = None
    include_tags: set[str] = field(default_factory=set)
    exclude_tags: set[str] = field(default_factory=set)
    gems: list[str] | None = None

    def to_version_selector(self) -> str:
        """The ``@version-distribution+tag-tag`` suffix that selects this request."""
        selector = ""
        if self.version is not None:
            selector += f"@{self.version}"
        if self.distribution is not None:
            selector += "-" if selector else "@-"
            selector += self.distribution
        selector += "".join(f"+{tag}" for tag in sorted(self.include_tags))
        selector += "".join(f"-{tag}" for tag in sorted(self.exclude_tags))
        return selector

    def to_dict(self) -> dict:
        return {
            "cmd": self.cmd,
            "version": None if self.version is None else self.version.value,
            "distribution": self.distribution,
            "include_tags": sorted(self.include_tags),
            "exclude_tags": sorted(self.exclude_tags),
            "gems": self.gems,
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> ExecutorCmd:
        version = data.get("version")
        gems = data.get("gems")
        return cls(
            cmd=data["cmd"],
            version=None if version is None else GgVersionReq(version),
            distribution=data.get("distribution"),
            include_tags=set(data.get("include_tags", [])),
            exclude_tags=set(data.get("exclude_tags", [])),
            gems=None if gems is None else list(gems),
        )


@dataclass(frozen=True)
class ExecutorDep:
    """Another tool that must be prepared before this one runs."""

    name: str
    version: str | None = None
    optional: bool = False

    @classmethod
    def optional_dep(cls, name: str, version: str | None = None) -> ExecutorDep:
        return cls(name, version, optional=True)


class BinKind(Enum):
    """How a binary name is matched."""

    EXACT = "exact"
    REGEX = "regex"


@dataclass(frozen=True)
class BinPattern:
    """A binary to look for, by exact name (may hold sub-directories) or by regex."""

    pattern: str
    kind: BinKind = BinKind.EXACT

    @classmethod
    def exact(cls, name: str) -> BinPattern:
        return cls(name, BinKind.EXACT)

    @classmethod
    def regex(cls, pattern: str) -> BinPattern:
        return cls(pattern, BinKind.REGEX)


@dataclass
class GgMeta:
    """What was installed into a cache directory, stored next to it as JSON."""

    version_req: GgVersionReq
    download: Download
    cmd: ExecutorCmd

    def to_json(self) -> str:
        return json.dumps(
            {
                "version_req": self.version_req.value,
                "download": self.download.to_dict(),
                "cmd": self.cmd.to_dict(),
            }
        )

    @classmethod
    def from_json(cls, text: str) -> GgMeta:
        try:
            data = json.loads(text)
            return cls(
                version_req=GgVersionReq(data["version_req"]),
                download=Download.from_dict(data["download"]),
                cmd=ExecutorCmd.from_dict(data["cmd"]),
            )
        except (KeyError, TypeError, ValueError) as error:
            raise ValueError(f"invalid tool metadata: {error}") from error


def java_deps() -> list[ExecutorDep]:
    """Dependencies of tools that need a Java runtime."""
    return [ExecutorDep("java")]


class Executor(ABC):
    """A tool that knows where its releases are and which binaries to run.

    Subclasses describe their defaults through class attributes and may
    override the hook methods for anything more involved.
    """

    name: str = ""
    default_version_req: ClassVar[VersionReq | None] = None
    deps: ClassVar[tuple[ExecutorDep, ...]] = ()
    env_dirs: ClassVar[Mapping[str, str]] = {}
    install_override: ClassVar[AppPath | None] = None

    def __init__(self, cmd: ExecutorCmd) -> None:
        self.cmd = cmd

    @abstractmethod
    def get_download_urls(self, input: AppInput) -> list[Download]:
        """All known release files of the tool."""

    @abstractmethod
    def get_bins(self, input: AppInput) -> list[BinPattern]:
        """Binaries to try, in order."""

    def get_url_matches(self, urls: Sequence[Download], input: AppInput) -> list[Download]:
        return get_url_matches(urls, input, self)

    def version_req(self) -> VersionReq | None:
        """Requirement used when the request names no version."""
        return self.default_version_req

    def get_deps(self, input: AppInput) -> list[ExecutorDep]:
        """Tools to prepare before this one."""
        return list(self.deps)

    def default_include_tags(self) -> set[str]:
        return set()

    def default_exclude_tags(self) -> set[str]:
        return set()

    def get_env(self, app_path: AppPath) -> dict[str, str]:
        """Environment variables pointing into the install directory."""
        return {key: str(app_path.install_dir / sub) for key, sub in self.env_dirs.items()}

    def bin_dirs(self) -> list[str]:
        return ["bin", "."]

    def customize_args(self, input: AppInput, app_path: AppPath) -> list[str]:
        return list(input.app_args)

    def custom_prep(self, input: AppInput) -> AppPath | None:
        """Return an install location to skip the download entirely."""
        return self.install_override

    def post_download(self, download_file_path: str) -> bool:
        """Inspect the downloaded file; False aborts the installation."""
        return Path(download_file_path).is_file()

    def post_prep(self, cache_path: str) -> None:
        """Hook run after the tool has been unpacked into the cache."""
        Path(cache_path).mkdir(parents=True, exist_ok=True)


def cache_base_dir() -> str:
    """The cache root, from GG_CACHE_DIR or the local default."""
    return os.environ.get("GG_CACHE_DIR", DEFAULT_CACHE_DIR)


def _accepts(download: Download, input: AppInput, executor: Executor) -> bool:
    target = input.target
    if target.variant is not None:
        if download.variant is None:
            return False
        if download.variant not in (VARIANT_ANY, target.variant):
            return False
    elif download.variant is not None and download.variant != VARIANT_ANY:
        return False

    if download.os is None:
        log.debug("Filtering out %s - No OS specified", download.download_url)
        return False
    if download.os not in (Os.ANY, target.os):
        log.debug(
            "Filtering out %s - OS mismatch: %s != %s",
            download.download_url, download.os, target.os,
        )
        return False
    if download.arch is None or download.arch not in (Arch.ANY, target.arch):
        return False

    cmd = executor.cmd
    if not (cmd.include_tags | executor.default_include_tags()) <= download.tags:
        return False
    if (cmd.exclude_tags | executor.default_exclude_tags()) & download.tags:
        return False

    if cmd.version is not None:
        return download.version is not None and cmd.version.to_version_req().matches(
            download.version.to_version()
        )
    log.debug(
        "Keeping download: %s (OS: %s, Arch: %s) for target (OS: %s, Arch: %s)",
        download.download_url, download.os, download.arch, target.os, target.arch,
    )
    return True


def _url_file_name(download: Download) -> str:
    return download.download_url.split("/")[-1].lower()


def _version_key(download: Download) -> tuple:
    if download.version is None:
        return (0,)
    return (1, download.version.to_version())


def get_url_matches(
    urls: Sequence[Download], input: AppInput, executor: Executor
) -> list[Download]:
    """Downloads suitable for the target, best first.

    Files named after the tool come first, then platform specific files,
    then newer versions.
    """
    matches = [download for download in urls if _accepts(download, input, executor)]
    tool_name = executor.name.lower()
    matches.sort(key=_version_key, reverse=True)
    matches.sort(
        key=lambda d: (
            tool_name not in _url_file_name(d),
            not (d.os != Os.ANY or d.arch != Arch.ANY),
        )
    )
    return matches


def get_app_path(path: str | Path) -> AppPath:
    """Locate a tool's directory inside the cache."""
    full = Path.cwd() / cache_base_dir() / path
    if full.exists():
        return AppPath(full)
    raise ExecutorError(
        "Error: Tool not found in cache. "
        "Try running the command again to download and install it."
    )


def _find_app_path(path: str) -> AppPath | None:
    log.info("Trying to find %s", path)
    try:
        return get_app_path(path)
    except (ExecutorError, OSError):
        return None


def _install_subpath(executor: Executor, version_req_str: str) -> str:
    name = executor.name
    escaped = (
        version_req_str.replace("*", "_star_")
        .replace("^", "_hat_")
        .replace("~", "_tilde_")
        .replace("=", "_eq_")
    )
    include = "_".join(f"i{tag}" for tag in sorted(executor.cmd.include_tags))
    exclude = "_".join(f"e{tag}" for tag in sorted(executor.cmd.exclude_tags))
    return f"{name}/{name}{escaped}{include}{exclude}"


def prep(executor: Executor, input: AppInput, progress: tqdm | None = None) -> AppPath:
    """Make sure the tool is in the cache, downloading it if needed."""
    custom = executor.custom_prep(input)
    if custom is not None:
        return custom

    cmd = executor.cmd
    version_req = (
        cmd.version.to_version_req() if cmd.version is not None else executor.version_req()
    )
    version_req_str = str(version_req) if version_req is not None else "*"
    path = _install_subpath(executor, version_req_str)

    app_path = _find_app_path(path)
    name = executor.name
    if progress is None:
        progress = create_progress()
    progress.set_description(name)

    if app_path is not None and app_path.install_dir.exists():
        return app_path
    log.info("%s not found in cache. Download time", name)

    progress.set_postfix_str("Fetching versions")
    urls = executor.get_download_urls(input)
    progress.set_postfix_str(f"{len(urls)} versions")
    log.debug("%s", urls)
    if not urls:
        raise ExecutorError("Did not find any download URL!")

    matches = get_url_matches(urls, input, executor)
    log.debug(
        "Found %d matching URLs for target OS: %s, Arch: %s",
        len(matches), input.target.os, input.target.arch,
    )
    if not matches:
        raise ExecutorError(
            f"No matching download found for OS: {input.target.os.value}, "
            f"Arch: {input.target.arch.value}"
        )
    download = matches[0]
    progress.set_description(f"{name} {download.version or ''}")

    cache_path = Path(cache_base_dir()) / path
    with Archive(download.download_url, cache_path, progress) as archive:
        archive.download()
        if not executor.post_download(str(archive.file_path)):
            raise ExecutorError("Post download failed")
        archive.unpack()

    meta = GgMeta(GgVersionReq(version_req_str), download, cmd)
    try:
        (cache_path / META_FILE_NAME).write_text(meta.to_json(), encoding="utf-8")
    except OSError as error:
        log.debug("Could not write tool metadata: %s", error)

    executor.post_prep(str(cache_path))

    app_path = _find_app_path(path)
    if app_path is None:
        raise ExecutorError(
            f"Error: Unable to locate {name} binary after download. "
            "The downloaded package may not contain the expected executable."
        )
    return app_path


def _which_regex(pattern: re.Pattern[str], search_path: str) -> str | None:
    for directory in search_path.split(os.pathsep):
        if not directory:
            continue
        try:
            entries = sorted(Path(directory).iterdir())
        except OSError:
            continue
        for entry in entries:
            if pattern.search(entry.name) and entry.is_file() and os.access(entry, os.X_OK):
                return str(entry)
    return None


def _find_bin(bin: BinPattern, path_vars: Sequence[str], search_path: str) -> str | None:
    if bin.kind is BinKind.REGEX:
        try:
            pattern = re.compile(bin.pattern)
        except re.error:
            return None
        return _which_regex(pattern, search_path)

    if "/" in bin.pattern:
        *sub_dirs, binary = bin.pattern.split("/")
        custom = os.pathsep.join(str(Path(base, *sub_dirs)) for base in path_vars)
        return shutil.which(binary, path=custom)
    return shutil.which(bin.pattern, path=search_path)


def try_run(
    input: AppInput,
    executor: Executor,
    app_path: AppPath,
    path_vars: Sequence[str],
    env_vars: Mapping[str, str],
) -> bool:
    """Run the first binary of the tool that can be found; True if it succeeded."""
    args = executor.customize_args(input, app_path)
    search_path = os.pathsep.join([os.pathsep.join(path_vars), os.environ.get("PATH", "")])
    log.info("PATH: %s", search_path)
    bins = executor.get_bins(input)
    log.info("Trying to find these bins: %s", bins)

    for bin in bins:
        bin_path = _find_bin(bin, path_vars, search_path)
        if bin_path is None:
            continue
        log.info("Executing: %s. With args: %s", bin_path, args)
        env = {**os.environ, "PATH": search_path, **env_vars}
        try:
            process = subprocess.Popen([bin_path, *args], env=env)
        except OSError as error:
            raise ExecutorError(str(error)) from error
        try:
            returncode = process.wait()
        except KeyboardInterrupt:
            process.kill()
            process.wait()
            return False
        if returncode != 0:
            log.info("Unable to execute %s", bin_path)
        return returncode == 0

    raise ExecutorError(
        f"Error: Unable to find executable for {executor.name}. The tool may not be "
        "properly installed or the binary name doesn't match expected patterns."
    )