import json
from pathlib import Path
from unittest import mock

import pytest
from tqdm import tqdm

from ggtool.executor import (
    META_FILE_NAME,
    VARIANT_ANY,
    AppInput,
    AppPath,
    Arch,
    BinPattern,
    Download,
    Executor,
    ExecutorCmd,
    ExecutorDep,
    ExecutorError,
    GgMeta,
    Os,
    Target,
    cache_base_dir,
    get_app_path,
    get_url_matches,
    prep,
    try_run,
)
from ggtool.versions import GgVersion, GgVersionReq

LINUX = Target(Os.LINUX, Arch.X86_64)


class DemoExecutor(Executor):
    name = "demo"

    def __init__(
        self,
        cmd=None,
        urls=(),
        bins=(),
        include=(),
        exclude=(),
        accept_download=True,
        custom=None,
    ):
        super().__init__(cmd or ExecutorCmd("demo"))
        self._urls = list(urls)
        self._bins = list(bins)
        self._include = set(include)
        self._exclude = set(exclude)
        self._accept = accept_download
        self._custom = custom
        self.fetches = 0

    def get_download_urls(self, input):
        self.fetches += 1
        return list(self._urls)

    def get_bins(self, input):
        return list(self._bins)

    def default_include_tags(self):
        return set(self._include)

    def default_exclude_tags(self):
        return set(self._exclude)

    def post_download(self, download_file_path):
        return self._accept

    def custom_prep(self, input):
        return self._custom


def dl(url, version="1.0.0", os_=Os.ANY, arch=Arch.ANY, variant=VARIANT_ANY, tags=()):
    return Download(
        url,
        GgVersion.new(version) if version is not None else None,
        os_,
        arch,
        variant,
        set(tags),
    )


def urls_of(downloads):
    return [d.download_url for d in downloads]


class _FakeResponse:
    def __init__(self, data):
        self.data = data
        self.headers = {"Content-Length": str(len(data))}

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def iter_content(self, chunk_size=1):
        yield self.data


def test_download_new_normalises_version():
    download = Download.new("https://example.com/a.zip", "v18", None)
    assert download.version == GgVersion("18.0.0")
    assert download.os is Os.ANY
    assert download.arch is Arch.ANY
    assert download.tags == set()


def test_download_new_unparsable_version():
    download = Download.new("https://example.com/a.zip", "latest", VARIANT_ANY)
    assert download.version is None
    assert download.variant == VARIANT_ANY


def test_version_selector_full():
    cmd = ExecutorCmd("java", GgVersionReq.new("17"), "temurin", {"lts"}, {"ea"})
    assert cmd.to_version_selector() == "@17-temurin+lts-ea"


def test_version_selector_distribution_only_and_empty():
    assert ExecutorCmd("java", distribution="temurin").to_version_selector() == "@-temurin"
    assert ExecutorCmd("java").to_version_selector() == ""


def test_optional_dep():
    assert ExecutorDep.optional_dep("java", "17") == ExecutorDep("java", "17", True)
    assert ExecutorDep("java").optional is False


def test_gg_meta_round_trip():
    meta = GgMeta(
        GgVersionReq("*"),
        dl("https://example.com/demo.tar.gz", "2.1.0", Os.LINUX, Arch.ARM64, tags={"lts"}),
        ExecutorCmd("demo", GgVersionReq.new("2.1"), None, {"lts"}, set(), ["rake"]),
    )
    text = meta.to_json()
    assert GgMeta.from_json(text) == meta
    assert json.loads(text)["download"]["download_url"] == "https://example.com/demo.tar.gz"


def test_gg_meta_rejects_garbage():
    with pytest.raises(ValueError):
        GgMeta.from_json("{}")
    with pytest.raises(ValueError):
        GgMeta.from_json("not json")


def test_filters_by_os_and_arch():
    urls = [
        dl("https://example.com/linux", os_=Os.LINUX),
        dl("https://example.com/windows", os_=Os.WINDOWS),
        dl("https://example.com/any"),
        dl("https://example.com/arm", os_=Os.LINUX, arch=Arch.ARM64),
        dl("https://example.com/noos", os_=None),
    ]
    result = get_url_matches(urls, AppInput(LINUX), DemoExecutor())
    assert sorted(urls_of(result)) == ["https://example.com/any", "https://example.com/linux"]


def test_filters_by_variant():
    urls = [
        dl("https://example.com/musl", variant="musl"),
        dl("https://example.com/any"),
        dl("https://example.com/none", variant=None),
    ]
    without = get_url_matches(urls, AppInput(LINUX), DemoExecutor())
    assert sorted(urls_of(without)) == ["https://example.com/any", "https://example.com/none"]
    musl = AppInput(Target(Os.LINUX, Arch.X86_64, "musl"))
    with_variant = get_url_matches(urls, musl, DemoExecutor())
    assert sorted(urls_of(with_variant)) == ["https://example.com/any", "https://example.com/musl"]


def test_filters_by_tags():
    urls = [
        dl("https://example.com/lts", tags={"lts"}),
        dl("https://example.com/lts-ea", tags={"lts", "ea"}),
        dl("https://example.com/plain"),
    ]
    by_cmd = DemoExecutor(ExecutorCmd("demo", include_tags={"lts"}, exclude_tags={"ea"}))
    assert urls_of(get_url_matches(urls, AppInput(LINUX), by_cmd)) == ["https://example.com/lts"]
    by_default = DemoExecutor(exclude={"ea"})
    assert sorted(urls_of(by_default.get_url_matches(urls, AppInput(LINUX)))) == [
        "https://example.com/lts",
        "https://example.com/plain",
    ]
    required = DemoExecutor(include={"lts"})
    assert len(get_url_matches(urls, AppInput(LINUX), required)) == 2


def test_filters_by_version_requirement():
    urls = [
        dl("https://example.com/a", "18.2.0"),
        dl("https://example.com/b", "19.0.0"),
        dl("https://example.com/c", None),
    ]
    executor = DemoExecutor(ExecutorCmd("demo", GgVersionReq.new("18")))
    assert urls_of(get_url_matches(urls, AppInput(LINUX), executor)) == ["https://example.com/a"]


def test_sort_order():
    other = dl("https://example.com/x/other-linux.tar.gz", "3.0.0", Os.LINUX)
    repo_only = dl("https://example.com/demo/any.tar.gz", "2.0.0")
    named = dl("https://example.com/x/DEMO-1.tar.gz", "1.0.0")
    newest = dl("https://example.com/x/generic.tar.gz", "4.0.0")
    unversioned = dl("https://example.com/x/nover.tar.gz", None)
    urls = [unversioned, repo_only, other, newest, named]
    result = get_url_matches(urls, AppInput(LINUX), DemoExecutor())
    assert result == [named, other, newest, repo_only, unversioned]


def test_method_matches_function():
    urls = [dl("https://example.com/a", "1.0.0"), dl("https://example.com/b", "2.0.0")]
    executor = DemoExecutor()
    assert executor.get_url_matches(urls, AppInput(LINUX)) == get_url_matches(
        urls, AppInput(LINUX), executor
    )


def test_cache_base_dir(monkeypatch, tmp_path):
    monkeypatch.delenv("GG_CACHE_DIR", raising=False)
    assert cache_base_dir() == ".cache/gg"
    monkeypatch.setenv("GG_CACHE_DIR", str(tmp_path))
    assert cache_base_dir() == str(tmp_path)


def test_get_app_path(monkeypatch, tmp_path):
    monkeypatch.setenv("GG_CACHE_DIR", str(tmp_path))
    (tmp_path / "demo" / "x").mkdir(parents=True)
    assert get_app_path("demo/x") == AppPath(tmp_path / "demo" / "x")
    with pytest.raises(ExecutorError):
        get_app_path("demo/missing")


def test_prep_uses_cached_directory(monkeypatch, tmp_path):
    monkeypatch.setenv("GG_CACHE_DIR", str(tmp_path))
    cached = tmp_path / "demo" / "demo_star_"
    cached.mkdir(parents=True)
    executor = DemoExecutor()
    result = prep(executor, AppInput(LINUX), tqdm(disable=True))
    assert result.install_dir == cached
    assert executor.fetches == 0


def test_prep_cache_dir_includes_requirement_and_tags(monkeypatch, tmp_path):
    monkeypatch.setenv("GG_CACHE_DIR", str(tmp_path))
    cached = tmp_path / "demo" / "demo_eq_1.2.3ilts"
    cached.mkdir(parents=True)
    cmd = ExecutorCmd("demo", GgVersionReq.new("1.2.3"), include_tags={"lts"})
    result = prep(DemoExecutor(cmd), AppInput(LINUX), tqdm(disable=True))
    assert result.install_dir == cached


def test_prep_custom_prep_short_circuits(tmp_path):
    custom = AppPath(tmp_path)
    executor = DemoExecutor(custom=custom)
    assert prep(executor, AppInput(LINUX), tqdm(disable=True)) == custom
    assert executor.fetches == 0


def test_prep_without_urls(monkeypatch, tmp_path):
    monkeypatch.setenv("GG_CACHE_DIR", str(tmp_path))
    with pytest.raises(ExecutorError, match="Did not find any download URL"):
        prep(DemoExecutor(), AppInput(LINUX), tqdm(disable=True))


def test_prep_without_matching_urls(monkeypatch, tmp_path):
    monkeypatch.setenv("GG_CACHE_DIR", str(tmp_path))
    executor = DemoExecutor(urls=[dl("https://example.com/w", os_=Os.WINDOWS)])
    with pytest.raises(ExecutorError, match="No matching download"):
        prep(executor, AppInput(LINUX), tqdm(disable=True))


def test_prep_downloads_and_writes_meta(monkeypatch, tmp_path):
    cache = tmp_path / "cache"
    monkeypatch.setenv("GG_CACHE_DIR", str(cache))
    data = b"#!/bin/sh\necho hi\n"
    download = dl("https://example.com/files/demo.sh", "1.4.0")
    executor = DemoExecutor(urls=[download])
    with mock.patch("ggtool.archive.requests.get", return_value=_FakeResponse(data)):
        result = prep(executor, AppInput(LINUX), tqdm(disable=True))
    assert result.install_dir == cache / "demo" / "demo_star_"
    assert (result.install_dir / "demo.sh").read_bytes() == data
    meta = GgMeta.from_json((result.install_dir / META_FILE_NAME).read_text())
    assert meta.download == download
    assert meta.version_req == GgVersionReq("*")
    assert meta.cmd.cmd == "demo"


def test_prep_post_download_rejects(monkeypatch, tmp_path):
    monkeypatch.setenv("GG_CACHE_DIR", str(tmp_path))
    executor = DemoExecutor(urls=[dl("https://example.com/files/demo.sh")], accept_download=False)
    with mock.patch("ggtool.archive.requests.get", return_value=_FakeResponse(b"x")):
        with pytest.raises(ExecutorError, match="Post download failed"):
            prep(executor, AppInput(LINUX), tqdm(disable=True))
    assert not (tmp_path / "demo" / "demo_star_").exists()


def _script(path: Path, body: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("#!/bin/sh\n" + body + "\n")
    path.chmod(0o755)
    return path


def test_try_run_exit_status(tmp_path):
    _script(tmp_path / "ok-tool", "exit 0")
    _script(tmp_path / "bad-tool", "exit 3")
    ok = DemoExecutor(bins=[BinPattern.exact("ok-tool")])
    bad = DemoExecutor(bins=[BinPattern.exact("bad-tool")])
    assert try_run(AppInput(LINUX), ok, AppPath(tmp_path), [str(tmp_path)], {}) is True
    assert try_run(AppInput(LINUX), bad, AppPath(tmp_path), [str(tmp_path)], {}) is False


def test_try_run_passes_args_and_env(tmp_path):
    _script(tmp_path / "bin" / "demo", 'printf "%s %s" "$GG_TEST_VALUE" "$1" > "$2"')
    out = tmp_path / "out.txt"
    executor = DemoExecutor(bins=[BinPattern.exact("bin/demo")])
    app_input = AppInput(LINUX, ["hello", str(out)])
    result = try_run(app_input, executor, AppPath(tmp_path), [str(tmp_path)], {"GG_TEST_VALUE": "value"})
    assert result is True
    assert out.read_text() == "value hello"


def test_try_run_regex_and_fallthrough(tmp_path):
    _script(tmp_path / "mytool-1.0", "exit 0")
    executor = DemoExecutor(
        bins=[BinPattern.exact("absent-tool"), BinPattern.regex(r"^mytool-\d")]
    )
    assert try_run(AppInput(LINUX), executor, AppPath(tmp_path), [str(tmp_path)], {}) is True


def test_try_run_missing_binary(tmp_path):
    executor = DemoExecutor(bins=[BinPattern.exact("gg-no-such-tool"), BinPattern.regex("[")])
    with pytest.raises(ExecutorError, match="Unable to find executable for demo"):
        try_run(AppInput(LINUX), executor, AppPath(tmp_path), [str(tmp_path)], {})