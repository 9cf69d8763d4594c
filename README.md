# ggtool

ggtool is a library for managing developer tools on demand. It parses tool
selectors such as `node@18` or `java@17-temurin+lts-ea`, resolves semantic
version requirements, picks the best matching download for a target
platform, fetches and unpacks it into a local cache, and runs the tool's
binary with your arguments.

## Tool selectors (`ggtool.cli`)

A command line starts with one or more tools joined by `:`, followed by the
arguments for the tools:

| Selector                  | Meaning                                              |
|---------------------------|------------------------------------------------------|
| `node`                    | node, version taken from `gg.toml` if pinned there   |
| `node@18`                 | node matching the requirement `18`                   |
| `gradle@1.2.3`            | gradle matching `1.2.3`                              |
| `java@17-temurin`         | java 17 from the `temurin` distribution              |
| `java@17-temurin+lts-ea`  | as above, requiring the `lts` tag, excluding `ea`    |
| `node@10:gradle@1.2.3`    | both tools together                                  |

`parse_cli` parses an argument list into a `Cli`; `Cli.parse_args` turns it
into a list of `ClapCmd` and the remaining arguments:

```python
from ggtool.cli import parse_cli
from ggtool.config import GgConfig

cli = parse_cli(["java@17-temurin+lts-ea", "hello"])
cmds, app_args = cli.parse_args(GgConfig())

cmds[0].cmd           # "java"
cmds[0].version       # "17"
cmds[0].distribution  # "temurin"
cmds[0].include_tags  # {"lts"}
cmds[0].exclude_tags  # {"ea"}
app_args              # ["hello"]
```

Recognised options are `-l`, `-v` (repeatable; see `Cli.get_log_level`),
`-w`, `-h/--help`, `-V/--version`, `--os`, `--arch`, `-u` and `--major`, and
the subcommands `update [tool] [-u] [--major] [-f/--force]`,
`tools [tool]`, `clean-cache` and `config init|show`. Parse errors raise
`CliError`. `parse_command_string` parses a selector string on its own.

## Versions (`ggtool.versions`)

`Version` and `VersionReq` implement semantic versions and comma separated
requirements (`=`, `>`, `>=`, `<`, `<=`, `~`, `^`, wildcards).
`GgVersion.new` accepts lenient forms (`v18`, `18.2`) and
`GgVersionReq.new` adds the implied operator: a bare `22.11.0` means exactly
that version, `22.11` means `~22.11`.

```python
from ggtool.versions import GgVersion, GgVersionReq

req = GgVersionReq.new("22.11")
req.to_version_req().matches(GgVersion.new("22.11.5").to_version())  # True
req.to_version_req().matches(GgVersion.new("22.12.0").to_version())  # False
```

## Project configuration: `gg.toml` (`ggtool.config`)

A `gg.toml` file in the start directory or any parent pins tool versions and
defines aliases:

```toml
[dependencies]
node = "^18.0.0"
java = "17"

[aliases]
build = "gradle clean build"
serve = "node@18 server.js"
ci = "gradle clean build && npm test"
```

A tool named without a version takes it from `[dependencies]`; `npm` and
`npx` fall back to `node`, and `dart` to `flutter`. An alias expands into
its words with further arguments appended; an alias joined by `&&` is
reported by `Cli.parse_args` as a single `__multi_alias__<name>` command.

```python
from ggtool.config import load_config, init_config

config = load_config(".")
config.resolve_alias("build")           # ["gradle", "clean", "build"]
config.resolve_alias_with_and("ci")     # [["gradle", "clean", "build"], ["npm", "test"]]
```

`find_config_file` locates the file, `load_config_file` parses one and
raises `ConfigError` on bad input, `load_config` falls back to an empty
`GgConfig`, `GgConfig.show_config` prints it, and `init_config` writes a
commented starter file, refusing to overwrite an existing one.

## Defining and running tools (`ggtool.executor`)

A tool is a subclass of `Executor` with a `name`, a `get_download_urls`
returning `Download` entries and a `get_bins` returning `BinPattern`s:

```python
from ggtool.executor import (
    AppInput, Arch, BinPattern, Download, Executor, ExecutorCmd, Os, Target,
    prep, try_run,
)

class Hello(Executor):
    name = "hello"

    def get_download_urls(self, input):
        return [Download.new("https://downloads.example.com/hello-1.2.0.tar.gz", "1.2.0")]

    def get_bins(self, input):
        return [BinPattern.exact("hello")]

executor = Hello(ExecutorCmd("hello"))
app_input = AppInput(Target(Os.LINUX, Arch.X86_64), ["--help"])
app_path = prep(executor, app_input)
try_run(app_input, executor, app_path, [str(app_path.install_dir / "bin")], {})
```

`get_url_matches` filters downloads by OS, architecture, variant, tags and
version requirement, ordering files named after the tool first, then
platform specific ones, then newer versions. `prep` downloads and unpacks
the best match (via `ggtool.archive.Archive`, with a `tqdm` bar from
`ggtool.progress.create_progress`) unless it is already cached, and writes a
`gg-meta.json` next to it. `try_run` starts the first binary found and
returns whether it exited successfully. Failures raise `ExecutorError`.

`ggtool.maven.get_download_urls_from_maven(group, artifact)` lists the jars
of an artifact under `org/<group>/<artifact>` on Maven Central.

## Cache

Tools are unpacked below `.cache/gg` in the current directory, or below the
directory named by `GG_CACHE_DIR`. Archives ending in `.tar`, `.tar.gz`,
`.tgz`, `.xz` and `.zip` are extracted; a single top-level folder is moved
up; other files are copied as they are.

`ggtool.checker.check_or_update_all` and `check_or_update_tool` read the
`gg-meta.json` files, report whether newer releases exist and, when asked,
reinstall; major-version updates are only included with `allow_major`.
They take a `factory` that builds an `Executor` from an `ExecutorCmd`.
`ggtool.cleaner.clean_cache` lists what the cache holds and deletes it after
confirmation on standard input.

## What the package does not do

- It installs no command: there is no program entry point that dispatches a
  parsed `Cli` to these functions; callers wire that up themselves.
- It ships no tool definitions; every tool is an `Executor` subclass you
  write, and the checker needs your `factory` to find them.
- It does not update itself.
- `.7z` archives are rejected with `ArchiveError`, and `.gem` files are only
  copied into the cache, not installed.

## Running the tests

Install the package with its `test` extra and run pytest from the project
directory.