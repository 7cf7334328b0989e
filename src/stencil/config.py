"""Configuration: delimiter syntaxes, template directories, whitespace and escapers."""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from stencil.errors import ConfigError

CONFIG_FILE_NAME = "stencil.toml"
DEFAULT_SYNTAX_NAME = "default"


class Whitespace(Enum):
    """How whitespace next to a tag is handled."""

    PRESERVE = "preserve"
    SUPPRESS = "suppress"
    MINIMIZE = "minimize"

    @classmethod
    def parse(cls, value: str) -> Whitespace:
        try:
            return cls(value)
        except ValueError:
            raise ConfigError(f'invalid value for `whitespace`: "{value}"') from None

    @classmethod
    def from_marker(cls, marker: str) -> Whitespace | None:
        """Map a tag trim marker to its handling, or None for no marker."""
        return _MARKERS.get(marker)


_MARKERS = {
    "-": Whitespace.SUPPRESS,
    "~": Whitespace.MINIMIZE,
    "+": Whitespace.PRESERVE,
}


@dataclass(frozen=True, slots=True)
class Syntax:
    """Delimiters of one template syntax."""

    block_start: str = "{%"
    block_end: str = "%}"
    expr_start: str = "{{"
    expr_end: str = "}}"
    comment_start: str = "{#"
    comment_end: str = "#}"

    def validate(self) -> None:
        delimiters = (
            self.block_start,
            self.block_end,
            self.expr_start,
            self.expr_end,
            self.comment_start,
            self.comment_end,
        )
        for s in delimiters:
            if len(s) < 2:
                raise ConfigError(f'delimiters must be at least two characters long: "{s}"')
            if any(ch.isspace() for ch in s):
                raise ConfigError(f'delimiters may not contain white spaces: "{s}"')

        openers = (self.block_start, self.expr_start, self.comment_start)
        for i, s1 in enumerate(openers):
            for s2 in openers[i + 1 :]:
                if s1.startswith(s2) or s2.startswith(s1):
                    raise ConfigError(
                        f'a delimiter may not be the prefix of another delimiter: "{s1}" vs "{s2}"'
                    )


DEFAULT_ESCAPERS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("html", "htm", "j2", "jinja", "jinja2", "svg", "xml"), "html"),
    (("md", "none", "txt", "yml", ""), "text"),
)


@dataclass
class Config:
    """Resolved engine configuration."""

    dirs: list[Path] = field(default_factory=lambda: [Path("templates")])
    syntaxes: dict[str, Syntax] = field(default_factory=lambda: {DEFAULT_SYNTAX_NAME: Syntax()})
    default_syntax: str = DEFAULT_SYNTAX_NAME
    whitespace: Whitespace = Whitespace.PRESERVE
    escapers: list[tuple[tuple[str, ...], str]] = field(
        default_factory=lambda: list(DEFAULT_ESCAPERS)
    )

    @classmethod
    def from_dict(cls, raw: dict[str, Any], root: Path) -> Config:
        """Build a Config from parsed TOML, resolving directories against root."""
        config = cls(dirs=[root / "templates"])

        general = raw.get("general")
        if isinstance(general, dict):
            dirs = general.get("dirs")
            if isinstance(dirs, list):
                config.dirs = [root / str(d) for d in dirs]
            default_syntax = general.get("default_syntax")
            if isinstance(default_syntax, str):
                config.default_syntax = default_syntax
            whitespace = general.get("whitespace")
            if isinstance(whitespace, str):
                config.whitespace = Whitespace.parse(whitespace)

        raw_syntaxes = raw.get("syntax")
        if isinstance(raw_syntaxes, list):
            for entry in raw_syntaxes:
                if not isinstance(entry, dict) or "name" not in entry:
                    raise ConfigError("every [[syntax]] entry needs a name")
                name = str(entry["name"])
                if name in config.syntaxes:
                    raise ConfigError(f'syntax "{name}" is already defined')
                fields = {k: str(v) for k, v in entry.items() if k != "name"}
                try:
                    syntax = Syntax(**fields)
                except TypeError as exc:
                    raise ConfigError(f'invalid syntax "{name}": {exc}') from None
                syntax.validate()
                config.syntaxes[name] = syntax

        if config.default_syntax not in config.syntaxes:
            raise ConfigError(f'default syntax "{config.default_syntax}" not found')

        raw_escapers = raw.get("escaper")
        if isinstance(raw_escapers, list):
            configured = []
            for entry in raw_escapers:
                if not isinstance(entry, dict) or "path" not in entry:
                    raise ConfigError("every [[escaper]] entry needs a path")
                extensions = tuple(str(e) for e in entry.get("extensions", ()))
                configured.append((extensions, str(entry["path"])))
            config.escapers = configured + list(DEFAULT_ESCAPERS)

        return config

    def syntax(self, name: str | None = None) -> Syntax:
        name = name or self.default_syntax
        try:
            return self.syntaxes[name]
        except KeyError:
            raise ConfigError(f'syntax "{name}" not found') from None

    def escaper_for(self, unit_name: str) -> str:
        """Pick the escaper for a template from its file extension."""
        ext = Path(unit_name).suffix.lstrip(".")
        for extensions, escaper in self.escapers:
            if ext in extensions:
                return escaper
        return "text"

    def find_template(self, name: str, start_at: Path | None = None) -> Path | None:
        """Locate a template beside the including file, then in each directory."""
        if start_at is not None:
            relative = start_at.parent / name
            if relative.is_file():
                return relative
        for d in self.dirs:
            rooted = d / name
            if rooted.is_file():
                return rooted
        return None

    def describe_dirs(self) -> str:
        return "[" + ", ".join(f'"{d}"' for d in self.dirs) + "]"


def load_config(config_path: Path | None, root: Path) -> Config:
    """Load a TOML config file; an absent auto-discovered file yields defaults."""
    path = config_path if config_path is not None else root / CONFIG_FILE_NAME

    if not path.is_file():
        if config_path is not None:
            raise ConfigError(f"`{path}` does not exist")
        return Config(dirs=[root / "templates"])

    with open(path, "rb") as f:
        try:
            raw = tomllib.load(f)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"invalid TOML in {path.name}: {exc}") from None

    return Config.from_dict(raw, path.parent)
