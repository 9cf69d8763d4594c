import gzip
import io
import tarfile
import zipfile
from pathlib import Path
from unittest import mock

import pytest

from ggtool.archive import Archive, ArchiveError, file_name_from_url


def _archive(tmp_path: Path, name: str) -> Archive:
    return Archive(f"https://example.com/dl/{name}", tmp_path / "cache" / "tool")


def _write_tar(dest: Path, files: dict, mode: str) -> None:
    with tarfile.open(dest, mode) as tar:
        for name, data in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = 0o755
            tar.addfile(info, io.BytesIO(data))


def _write_zip(dest: Path, files: dict) -> None:
    with zipfile.ZipFile(dest, "w") as zf:
        for name, data in files.items():
            info = zipfile.ZipInfo(name)
            info.external_attr = 0o755 << 16
            zf.writestr(info, data)


def test_file_name_from_url():
    assert file_name_from_url("https://example.com/dist/node-v18.tar.gz") == "node-v18.tar.gz"


def test_file_name_from_url_ignores_query():
    assert file_name_from_url("https://example.com/a/b/tool.zip?x=1") == "tool.zip"


def test_file_name_from_url_rejects_non_url():
    with pytest.raises(ValueError):
        file_name_from_url("not a url")


def test_file_path_is_in_temp_dir(tmp_path):
    archive = _archive(tmp_path, "tool.zip")
    try:
        assert archive.file_path.parent == archive.temp_dir
        assert archive.file_path.name == "tool.zip"
    finally:
        archive.cleanup()


def test_tar_gz_is_extracted_and_flattened(tmp_path):
    with _archive(tmp_path, "tool.tar.gz") as archive:
        _write_tar(archive.file_path, {"pkg/bin/tool": b"binary"}, "w:gz")
        archive.unpack()
        assert (archive.path / "bin" / "tool").read_bytes() == b"binary"
        assert not (archive.path / "pkg").exists()
        assert "Done" in archive.progress.postfix


def test_tgz_is_extracted(tmp_path):
    with _archive(tmp_path, "tool.tgz") as archive:
        _write_tar(archive.file_path, {"pkg/run": b"run"}, "w:gz")
        archive.unpack()
        assert (archive.path / "run").read_bytes() == b"run"


def test_tar_xz_is_extracted(tmp_path):
    with _archive(tmp_path, "tool.tar.xz") as archive:
        _write_tar(archive.file_path, {"pkg/lib/a.txt": b"a"}, "w:xz")
        archive.unpack()
        assert (archive.path / "lib" / "a.txt").read_bytes() == b"a"


def test_plain_tar_is_extracted(tmp_path):
    with _archive(tmp_path, "tool.tar") as archive:
        _write_tar(archive.file_path, {"x.txt": b"x", "y.txt": b"y"}, "w")
        archive.unpack()
        assert (archive.path / "x.txt").read_bytes() == b"x"
        assert (archive.path / "y.txt").read_bytes() == b"y"


def test_gz_single_file_is_decompressed(tmp_path):
    with _archive(tmp_path, "tool.gz") as archive:
        archive.file_path.write_bytes(gzip.compress(b"payload"))
        archive.unpack()
        assert (archive.path / "tool").read_bytes() == b"payload"


def test_several_top_level_entries_are_kept(tmp_path):
    with _archive(tmp_path, "tool.tar.gz") as archive:
        _write_tar(archive.file_path, {"a/x": b"x", "b/y": b"y"}, "w:gz")
        archive.unpack()
        assert (archive.path / "a" / "x").read_bytes() == b"x"
        assert (archive.path / "b" / "y").read_bytes() == b"y"


def test_flatten_handles_child_named_like_parent(tmp_path):
    with _archive(tmp_path, "tool.tar.gz") as archive:
        _write_tar(archive.file_path, {"pkg/pkg/file": b"f"}, "w:gz")
        archive.unpack()
        assert (archive.path / "pkg" / "file").read_bytes() == b"f"
        assert sorted(p.name for p in archive.path.iterdir()) == ["pkg"]


def test_zip_strips_top_level_and_keeps_mode(tmp_path):
    with _archive(tmp_path, "tool.zip") as archive:
        _write_zip(archive.file_path, {"pkg/bin/tool": b"zipped"})
        archive.unpack()
        target = archive.path / "bin" / "tool"
        assert target.read_bytes() == b"zipped"
        assert target.stat().st_mode & 0o777 == 0o755


def test_zip_with_several_files(tmp_path):
    with _archive(tmp_path, "tool.zip") as archive:
        _write_zip(archive.file_path, {"a.txt": b"a", "b.txt": b"b"})
        archive.unpack()
        assert sorted(p.name for p in archive.path.iterdir()) == ["a.txt", "b.txt"]


def test_zip_rejects_unsafe_path(tmp_path):
    with _archive(tmp_path, "tool.zip") as archive:
        _write_zip(archive.file_path, {"../evil": b"e"})
        with pytest.raises(ArchiveError):
            archive.unpack()


def test_unknown_extension_is_copied(tmp_path):
    with _archive(tmp_path, "tool.jar") as archive:
        archive.file_path.write_bytes(b"jar")
        archive.unpack()
        assert (archive.path / "tool.jar").read_bytes() == b"jar"


def test_gem_is_copied(tmp_path):
    with _archive(tmp_path, "thing.gem") as archive:
        archive.file_path.write_bytes(b"gem")
        archive.unpack()
        assert (archive.path / "thing.gem").read_bytes() == b"gem"


def test_seven_zip_is_refused(tmp_path):
    with _archive(tmp_path, "tool.7z") as archive:
        archive.file_path.write_bytes(b"7z")
        with pytest.raises(ArchiveError):
            archive.unpack()


def test_missing_extension_is_refused(tmp_path):
    with _archive(tmp_path, "tool") as archive:
        archive.file_path.write_bytes(b"bin")
        with pytest.raises(ArchiveError):
            archive.unpack()


def test_corrupt_gzip_raises(tmp_path):
    with _archive(tmp_path, "tool.tar.gz") as archive:
        archive.file_path.write_bytes(b"definitely not gzip")
        with pytest.raises(ArchiveError):
            archive.unpack()


def _response(data: bytes, chunks: list, length) -> mock.MagicMock:
    response = mock.MagicMock()
    response.headers = {} if length is None else {"Content-Length": str(length)}
    response.iter_content.return_value = chunks
    return response


@mock.patch("ggtool.archive.requests.get")
def test_download_writes_file(get, tmp_path):
    data = b"hello world"
    get.return_value = _response(data, [data[:5], data[5:]], len(data))
    with _archive(tmp_path, "tool.tar.gz") as archive:
        result = archive.download()
        assert result == archive.file_path
        assert archive.file_path.read_bytes() == data
        assert archive.progress.n == len(data)
        assert archive.progress.total == len(data)


@mock.patch("ggtool.archive.requests.get")
def test_download_position_is_clamped_to_length(get, tmp_path):
    data = b"0123456789"
    get.return_value = _response(data, [data], 4)
    with _archive(tmp_path, "tool.bin") as archive:
        archive.download()
        assert archive.file_path.read_bytes() == data
        assert archive.progress.n == 4


@mock.patch("ggtool.archive.requests.get")
def test_download_without_content_length_fails(get, tmp_path):
    get.return_value = _response(b"x", [b"x"], None)
    with _archive(tmp_path, "tool.bin") as archive:
        with pytest.raises(ArchiveError):
            archive.download()


def test_cleanup_removes_temp_dir(tmp_path):
    archive = _archive(tmp_path, "tool.zip")
    temp_dir = archive.temp_dir
    archive.file_path.write_bytes(b"x")
    archive.cleanup()
    assert not temp_dir.exists()


def test_context_manager_cleans_up(tmp_path):
    with _archive(tmp_path, "tool.zip") as archive:
        temp_dir = archive.temp_dir
        assert temp_dir.is_dir()
    assert not temp_dir.exists()