"""Project configuration read from a gg.toml file."""

from __future__ import annotations

import logging
import shlex
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

log = logging.getLogger(__name__)

CONFIG_FILE_NAME = "gg.toml"

DEFAULT_CONFIG = """# gg configuration file
# See the project documentation for more information

[dependencies]
# Define version requirements for tools
# Examples:
# node = "^18.0.0"
# java = "17"
# gradle = "~7.6.0"

[aliases]
# Define command shortcuts
# Examples:
# build = "gradle clean build"
# serve = "node@18 server.js"
# test = "npm test"
"""


class ConfigError(Exception):
    """Raised when a configuration file cannot be created, read or parsed."""


def _split_command(command: str) -> list[str]:
    try:
        return shlex.split(command)
    except ValueError:
        return [command]


@dataclass
class GgConfig:
    """Tool version requirements and command aliases."""

    dependencies: dict[str, str] = field(default_factory=dict)
    aliases: dict[str, str] = field(default_factory=dict)

    def resolve_alias(self, command: str) -> list[str] | None:
        alias = self.aliases.get(command)
        if alias is None:
            return None
        return _split_command(alias)

    def resolve_alias_with_and(self, command: str) -> list[list[str]] | None:
        alias = self.aliases.get(command)
        if alias is None:
            return None
        return [_split_command(part.strip()) for part in alias.split("&&")]

    def show_config(self, start: Path | str | None = None) -> None:
        """Print the configuration file found from start and what was parsed."""
        path = find_config_file(start)
        if path is None:
            print("No gg.toml configuration file found")
            print("Run 'gg config init' to create one")
            return

        print(f"Configuration loaded from: {path}")
        try:
            content = path.read_text(encoding="utf-8")
        except OSError as error:
            raise ConfigError(f"Failed to read config file: {error}") from error
        print("\nCurrent configuration:")
        print(content)

        if self.dependencies or self.aliases:
            print("\nParsed configuration:")
            if self.dependencies:
                print("\nDependencies:")
                for tool, version in self.dependencies.items():
                    print(f'  {tool} = "{version}"')
            if self.aliases:
                print("\nAliases:")
                for alias, command in self.aliases.items():
                    print(f'  {alias} = "{command}"')


def find_config_file(start: Path | str | None = None) -> Path | None:
    """Find gg.toml in start (default: the working directory) or an ancestor."""
    directory = Path(start) if start is not None else Path.cwd()
    directory = directory.absolute()
    for candidate_dir in (directory, *directory.parents):
        candidate = candidate_dir / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate
    return None


def _string_table(data: dict, key: str) -> dict[str, str]:
    table = data.get(key, {})
    if not isinstance(table, dict):
        raise ConfigError(f"'{key}' must be a table")
    for name, value in table.items():
        if not isinstance(value, str):
            raise ConfigError(f"'{key}.{name}' must be a string")
    return dict(table)


def load_config_file(path: Path | str) -> GgConfig:
    """Parse a configuration file, raising ConfigError if it is unusable."""
    try:
        with open(path, "rb") as handle:
            data = tomllib.load(handle)
    except OSError as error:
        raise ConfigError(f"Failed to read {path}: {error}") from error
    except tomllib.TOMLDecodeError as error:
        raise ConfigError(f"Invalid TOML in {path}: {error}") from error
    return GgConfig(
        dependencies=_string_table(data, "dependencies"),
        aliases=_string_table(data, "aliases"),
    )


def load_config(start: Path | str | None = None) -> GgConfig:
    """Load the nearest configuration, falling back to an empty one."""
    path = find_config_file(start)
    if path is None:
        log.debug("No config file found, using defaults")
        return GgConfig()
    log.info("Loading config from: %s", path)
    try:
        return load_config_file(path)
    except ConfigError as error:
        log.warning("Failed to load config from %s: %s", path, error)
        return GgConfig()


def init_config(path: Path | str | None = None) -> Path:
    """Write a commented default gg.toml; refuses to overwrite an existing one."""
    config_path = Path(path) if path is not None else Path(CONFIG_FILE_NAME)
    if config_path.exists():
        raise ConfigError("gg.toml already exists in current directory")
    try:
        config_path.write_text(DEFAULT_CONFIG, encoding="utf-8")
    except OSError as error:
        raise ConfigError(f"Failed to create gg.toml: {error}") from error
    print("Created gg.toml configuration file")
    return config_path