"""Downloading release archives and unpacking them into the tool cache."""

from __future__ import annotations

import gzip
import logging
import lzma
import shutil
import tarfile
import tempfile
import zipfile
from pathlib import Path, PurePosixPath
from urllib.parse import urlparse

import requests
from tqdm import tqdm

from ggtool.progress import create_progress

log = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024
_TIMEOUT = (30, 300)


class ArchiveError(Exception):
    """Raised when a download or an extraction fails."""


def file_name_from_url(url: str) -> str:
    """Return the last path segment of a URL."""
    parsed = urlparse(url)
    if not parsed.scheme or (not parsed.netloc and not parsed.path.startswith("/")):
        raise ValueError(f"not a URL with a path: {url!r}")
    return parsed.path.rsplit("/", 1)[-1]


def _zip_top_dir(members: list[zipfile.ZipInfo]) -> bool:
    """True if every entry lives under one shared top-level directory."""
    if not members:
        return False
    tops = set()
    for info in members:
        parts = PurePosixPath(info.filename).parts
        if not parts:
            return False
        if len(parts) == 1 and not info.is_dir():
            return False
        tops.add(parts[0])
    return len(tops) == 1


class Archive:
    """A downloadable file that is fetched to a temporary directory and unpacked into ``path``."""

    def __init__(self, url: str, path: Path | str, progress: tqdm | None = None) -> None:
        self.url = url
        self.path = Path(path)
        self.file_name = file_name_from_url(url)
        self.progress = progress if progress is not None else create_progress()
        self._temp_dir = tempfile.TemporaryDirectory(prefix="gg-")
        self.temp_dir = Path(self._temp_dir.name)
        self.file_path = self.temp_dir / self.file_name
        log.info("Archive temp directory: %s", self.temp_dir)

    def __enter__(self) -> Archive:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.cleanup()

    def _set_message(self, message: str) -> None:
        self.progress.set_postfix_str(message)

    def _finish(self, message: str) -> None:
        self._set_message(message)
        if self.progress.total is not None:
            self.progress.n = self.progress.total
        self.progress.refresh()

    def download(self) -> Path:
        """Fetch the URL into the temporary directory and return the file's path."""
        log.info("Downloading %s", self.url)
        self.progress.reset()
        self._set_message("Preparing")
        self._set_message("Downloading")
        try:
            response = requests.get(self.url, stream=True, timeout=_TIMEOUT)
        except requests.RequestException as error:
            raise ArchiveError(f"Failed to get {self.url}: {error}") from error

        with response:
            length = response.headers.get("Content-Length")
            if length is None or not str(length).strip().isdigit():
                raise ArchiveError(f"Failed to get content length from {self.url}")
            total = int(length)
            log.debug("Total size %d", total)
            self.progress.total = total
            self.progress.refresh()

            downloaded = 0
            try:
                with open(self.file_path, "wb") as handle:
                    for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
                        handle.write(chunk)
                        position = min(downloaded + len(chunk), total)
                        self.progress.update(position - downloaded)
                        downloaded = position
            except OSError as error:
                raise ArchiveError(f"Failed to write '{self.file_path}': {error}") from error
            except requests.RequestException as error:
                raise ArchiveError(f"Error while downloading {self.url}: {error}") from error

        log.info("Downloaded %s to %s", self.url, self.file_path)
        return self.file_path

    def unpack(self) -> None:
        """Extract or copy the downloaded file into ``path``."""
        self.progress.reset()
        self._set_message("Extracting")
        log.info("Extracting %s", self.file_name)

        suffix = PurePosixPath(self.file_name).suffix
        if not suffix:
            raise ArchiveError(f"Cannot tell the archive type of {self.file_name!r}")
        ext = suffix[1:]
        stem = self.file_name[: -len(suffix)]

        try:
            match ext:
                case "xz" | "gz" | "tgz":
                    decompressed = self._decompress(ext, stem)
                    if decompressed.suffix == ".tar":
                        self._untar(decompressed)
                    else:
                        self.path.mkdir(parents=True, exist_ok=True)
                        shutil.copy2(decompressed, self.path / decompressed.name)
                case "tar":
                    self._untar(self.file_path)
                case "zip":
                    log.info("Decompressing Zip into %s", self.path)
                    self._set_message("Unzip")
                    self.path.mkdir(parents=True, exist_ok=True)
                    self._extract_zip()
                case "7z":
                    raise ArchiveError(f"7z archives are not supported: {self.file_name}")
                case "gem":
                    log.info("Processing gem file")
                    self._set_message("Installing gem")
                    self.path.mkdir(parents=True, exist_ok=True)
                    shutil.copy2(self.file_path, self.path / self.file_name)
                case _:
                    self._set_message("Copy")
                    self.path.mkdir(parents=True, exist_ok=True)
                    shutil.copy2(self.file_path, self.path / self.file_name)
                    self._finish("Done")
                    return

            self._set_message("Move")
            self._flatten()
        except (tarfile.TarError, zipfile.BadZipFile, lzma.LZMAError, EOFError, OSError) as error:
            raise ArchiveError(f"Unable to extract {self.file_name}: {error}") from error

        self._finish("Done")

    def _decompress(self, ext: str, stem: str) -> Path:
        if ext == "xz":
            log.info("Decompressing Xz")
            opener = lzma.open
            target = self.temp_dir / stem
        else:
            log.info("Decompressing Gzip")
            self._set_message("Gunzip")
            opener = gzip.open
            target = self.temp_dir / (stem + ".tar" if ext == "tgz" else stem)
        with opener(self.file_path, "rb") as source, open(target, "wb") as sink:
            shutil.copyfileobj(source, sink)
        return target

    def _untar(self, archive: Path) -> None:
        log.info("Untar %s", archive)
        self._set_message("Untar")
        self.path.mkdir(parents=True, exist_ok=True)
        with tarfile.open(archive) as tar:
            if hasattr(tarfile, "tar_filter"):
                tar.extractall(self.path, filter="tar")
            else:
                tar.extractall(self.path)

    def _extract_zip(self) -> None:
        with zipfile.ZipFile(self.file_path) as zf:
            members = zf.infolist()
            strip = _zip_top_dir(members)
            for info in members:
                name = PurePosixPath(info.filename)
                if name.is_absolute() or ".." in name.parts:
                    raise ArchiveError(f"Unsafe path in zip archive: {info.filename!r}")
                parts = name.parts[1:] if strip else name.parts
                if not parts:
                    continue
                target = self.path.joinpath(*parts)
                if info.is_dir():
                    target.mkdir(parents=True, exist_ok=True)
                    continue
                target.parent.mkdir(parents=True, exist_ok=True)
                with zf.open(info) as source, open(target, "wb") as sink:
                    shutil.copyfileobj(source, sink)
                mode = (info.external_attr >> 16) & 0o777
                if mode:
                    target.chmod(mode)

    def _flatten(self) -> None:
        """Move the contents of a lone top-level directory up into ``path``."""
        if not self.path.is_dir():
            return
        entries = list(self.path.iterdir())
        if len(entries) != 1 or not entries[0].is_dir():
            return
        log.debug("Extracted files are contained in sub-folder. Moving them up")
        inner = entries[0]
        staging = inner.with_name(inner.name + ".gg-move")
        inner.rename(staging)
        for child in staging.iterdir():
            child.rename(self.path / child.name)
        try:
            staging.rmdir()
        except OSError:
            log.debug("Could not remove %s", staging)

    def cleanup(self) -> None:
        """Remove the temporary download directory."""
        log.info("Cleaning up temp directory: %s", self.temp_dir)
        self._temp_dir.cleanup()