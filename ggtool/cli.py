"""Command line parsing and expansion of tool selectors such as ``java@17-temurin+lts``."""

from __future__ import annotations

import re
import sys
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from enum import Enum

from ggtool.config import GgConfig

MULTI_ALIAS_PREFIX = "__multi_alias__"

_SHORT_FLAGS = {
    "l": "local_cache",
    "w": "log_external",
    "h": "help",
    "V": "version",
    "u": "update_flag",
}
_LONG_FLAGS = {
    "--help": "help",
    "--version": "version",
    "--major": "major_flag",
}
_LONG_VALUES = {
    "--os": "override_os",
    "--arch": "override_arch",
}
_TAG_RE = re.compile(r"[+-]")
_PIGGYBACK = {"npm": "node", "npx": "node", "dart": "flutter"}


class CliError(ValueError):
    """Raised when the command line cannot be parsed."""


class ConfigAction(Enum):
    """What the ``config`` subcommand should do."""

    INIT = "init"
    SHOW = "show"


@dataclass(frozen=True)
class UpdateCommand:
    """``update [tool] [-u] [--major] [-f]``."""

    tool: str | None = None
    update: bool = False
    major: bool = False
    force: bool = False


@dataclass(frozen=True)
class ToolsCommand:
    """``tools [tool]``."""

    tool: str | None = None


@dataclass(frozen=True)
class CleanCacheCommand:
    """``clean-cache``."""


@dataclass(frozen=True)
class ConfigCommand:
    """``config init`` or ``config show``."""

    action: ConfigAction


Command = UpdateCommand | ToolsCommand | CleanCacheCommand | ConfigCommand


@dataclass
class ClapCmd:
    """One requested tool with its version, distribution and tag filters."""

    cmd: str
    version: str | None = None
    distribution: str | None = None
    include_tags: set[str] = field(default_factory=set)
    exclude_tags: set[str] = field(default_factory=set)
    gems: list[str] | None = None


@dataclass
class Cli:
    """The parsed command line."""

    local_cache: bool = False
    verbosity: int = 0
    log_external: bool = False
    help: bool = False
    version: bool = False
    override_os: str | None = None
    override_arch: str | None = None
    update_flag: bool = False
    major_flag: bool = False
    command: Command | None = None
    args: list[str] = field(default_factory=list)

    def parse_args(self, config: GgConfig) -> tuple[list[ClapCmd], list[str]]:
        """Turn the command line into tools to run and the arguments for them."""
        match self.command:
            case UpdateCommand(tool=tool):
                return [ClapCmd("update")], [tool] if tool is not None else []
            case ToolsCommand(tool=tool):
                return [ClapCmd("tools")], [tool] if tool is not None else []
            case CleanCacheCommand():
                return [ClapCmd("clean-cache")], []
            case ConfigCommand(action=action):
                return [ClapCmd(f"config-{action.value}")], []

        if not self.args:
            return [], []
        first, rest = self.args[0], self.args[1:]

        alias_commands = config.resolve_alias_with_and(first)
        if alias_commands is not None and len(alias_commands) > 1:
            return [ClapCmd(f"{MULTI_ALIAS_PREFIX}{first}")], list(rest)

        alias_args = config.resolve_alias(first)
        if alias_args is not None:
            expanded = [*alias_args, *rest]
            cmds = parse_command_string(expanded[0], config) if expanded else []
            return cmds, expanded[1:]

        return parse_command_string(first, config), list(rest)

    def get_log_level(self) -> str:
        return {0: "warn", 1: "info", 2: "debug"}.get(self.verbosity, "trace")

    def get_update_flag(self) -> bool:
        if isinstance(self.command, UpdateCommand):
            return self.command.update
        return self.update_flag

    def get_major_flag(self) -> bool:
        if isinstance(self.command, UpdateCommand):
            return self.command.major
        return self.major_flag

    def get_force_flag(self) -> bool:
        if isinstance(self.command, UpdateCommand):
            return self.command.force
        return False


def _subcommand_flags(
    tokens: Iterator[str], name: str, short: dict[str, str], long: dict[str, str]
) -> tuple[dict[str, bool], list[str]]:
    flags: dict[str, bool] = {}
    positionals: list[str] = []
    for token in tokens:
        if token == "--":
            positionals.extend(tokens)
        elif token.startswith("--"):
            if token not in long:
                raise CliError(f"unexpected argument '{token}' for '{name}'")
            flags[long[token]] = True
        elif token.startswith("-") and len(token) > 1:
            for char in token[1:]:
                if char not in short:
                    raise CliError(f"unexpected argument '-{char}' for '{name}'")
                flags[short[char]] = True
        else:
            positionals.append(token)
    return flags, positionals


def _at_most_one(positionals: list[str], name: str) -> str | None:
    if len(positionals) > 1:
        raise CliError(f"unexpected argument '{positionals[1]}' for '{name}'")
    return positionals[0] if positionals else None


def _parse_subcommand(name: str, tokens: Iterator[str]) -> Command:
    if name == "update":
        flags, positionals = _subcommand_flags(
            tokens,
            name,
            {"u": "update", "f": "force"},
            {"--major": "major", "--force": "force"},
        )
        return UpdateCommand(tool=_at_most_one(positionals, name), **flags)
    if name == "tools":
        _, positionals = _subcommand_flags(tokens, name, {}, {})
        return ToolsCommand(tool=_at_most_one(positionals, name))
    if name == "clean-cache":
        _, positionals = _subcommand_flags(tokens, name, {}, {})
        if positionals:
            raise CliError(f"unexpected argument '{positionals[0]}' for '{name}'")
        return CleanCacheCommand()
    # config
    _, positionals = _subcommand_flags(tokens, name, {}, {})
    if not positionals:
        raise CliError("'config' requires a subcommand: init or show")
    action_name = _at_most_one(positionals, name)
    try:
        return ConfigCommand(ConfigAction(action_name))
    except ValueError:
        raise CliError(f"unrecognized subcommand '{action_name}' for 'config'") from None


_SUBCOMMANDS = frozenset({"update", "tools", "clean-cache", "config"})


def parse_cli(argv: Sequence[str] | None = None) -> Cli:
    """Parse command line arguments (without the program name)."""
    if argv is None:
        argv = sys.argv[1:]
    tokens = iter(argv)
    values: dict[str, object] = {}

    for token in tokens:
        if token == "--":
            values["args"] = list(tokens)
            break
        if token.startswith("--"):
            option, eq, inline = token.partition("=")
            if option in _LONG_VALUES:
                value = inline if eq else next(tokens, None)
                if value is None:
                    raise CliError(f"a value is required for '{option}'")
                values[_LONG_VALUES[option]] = value
            elif option in _LONG_FLAGS and not eq:
                values[_LONG_FLAGS[option]] = True
            else:
                raise CliError(f"unexpected argument '{token}'")
        elif token.startswith("-") and len(token) > 1:
            for char in token[1:]:
                if char == "v":
                    values["verbosity"] = int(values.get("verbosity", 0)) + 1
                elif char in _SHORT_FLAGS:
                    values[_SHORT_FLAGS[char]] = True
                else:
                    raise CliError(f"unexpected argument '-{char}'")
        elif token in _SUBCOMMANDS:
            values["command"] = _parse_subcommand(token, tokens)
            break
        else:
            values["args"] = [token, *tokens]
            break

    return Cli(**values)


def _split_version_part(spec: str) -> int:
    """Index where the version/distribution part of a selector ends."""
    found_dash = False
    for index, char in enumerate(spec):
        if char == "+":
            return index
        if char == "-":
            following = spec[index + 1 : index + 2]
            if following.isalpha() and not found_dash:
                found_dash = True
                continue
            return index
    return len(spec)


def _parse_selector(cmd: str, config: GgConfig) -> ClapCmd:
    parts = cmd.split("@")
    base_cmd = parts[0]
    result = ClapCmd(base_cmd)

    if len(parts) == 2:
        spec = parts[1]
        end = _split_version_part(spec)
        version_part = spec[:end]
        version, dash, distribution = version_part.partition("-")
        result.version = version or None
        if dash:
            result.distribution = distribution

        tag_part = spec[end:]
        markers = list(_TAG_RE.finditer(tag_part))
        bounds = [m.start() for m in markers[1:]] + [len(tag_part)]
        for marker, until in zip(markers, bounds):
            text = tag_part[marker.start() + 1 : until]
            if marker.group() == "+":
                result.include_tags.add(text)
            else:
                result.exclude_tags.add(text)

    if result.version is None:
        dependency = config.dependencies.get(base_cmd)
        if dependency is None:
            dependency = config.dependencies.get(_PIGGYBACK.get(base_cmd, base_cmd))
        result.version = dependency
    return result


def parse_command_string(cmd_string: str, config: GgConfig) -> list[ClapCmd]:
    """Parse colon separated selectors like ``node@18:java@17-temurin+lts``."""
    return [_parse_selector(cmd, config) for cmd in cmd_string.split(":") if cmd]