"""
Configuration file loading.

Manifesto:
    Configuration loading must be predictable and debuggable. Files are
    applied strictly in the order given, later files override earlier ones
    key by key, and a missing file is reported rather than silently assumed.

Supported formats::

    *.properties (and anything else)  ->  Java-style key=value pairs
    *.yaml / *.yml                    ->  nested mappings via PyYAML

Both end up in the same ``ConfigNode`` tree, so a deployment can keep the
pool settings in YAML and the query catalogue in a properties file.

Properties parsing is pure-Python: ``=``/``:``/whitespace separators,
``#``/``!`` comments, backslash line continuation and the usual escapes.

Tags:
    configuration, properties, yaml, loader, sql-lookup

Doc-Types:
    api-reference
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import yaml

from sql_lookup.config.tree import ConfigNode
from sql_lookup.core.errors import ConfigurationError, ErrorContext
from sql_lookup.core.logging import get_logger

logger = get_logger(__name__)

_YAML_SUFFIXES = {".yaml", ".yml"}

# First unescaped separator: "=", ":" or whitespace
_SEPARATOR_RE = re.compile(r"(?<!\\)(?:\s*[=:]\s*|\s+)")

_ESCAPES = {"t": "\t", "n": "\n", "r": "\r", "f": "\f"}
_ESCAPE_RE = re.compile(r"\\(u[0-9a-fA-F]{4}|.)")


def _unescape(text: str) -> str:
    def replace(match: re.Match[str]) -> str:
        seq = match.group(1)
        if seq.startswith("u") and len(seq) == 5:
            return chr(int(seq[1:], 16))
        return _ESCAPES.get(seq, seq)

    return _ESCAPE_RE.sub(replace, text)


def _logical_lines(text: str) -> Iterable[str]:
    """Join backslash-continued physical lines, dropping comments and blanks."""
    pending: str | None = None
    for raw in text.splitlines():
        line = raw.lstrip()
        if pending is None and (not line or line[0] in "#!"):
            continue
        if pending is not None:
            line = pending + line
            pending = None
        trailing = len(line) - len(line.rstrip("\\"))
        if trailing % 2 == 1:
            pending = line[:-1]
            continue
        yield line
    if pending is not None:
        yield pending


def parse_properties(text: str) -> dict[str, str]:
    """Parse Java-style properties text into a ``{key: value}`` mapping."""
    result: dict[str, str] = {}
    for line in _logical_lines(text):
        match = _SEPARATOR_RE.search(line)
        if match is None:
            key, value = line, ""
        else:
            key, value = line[: match.start()], line[match.end():]
        result[_unescape(key)] = _unescape(value)
    return result


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ConfigurationError(
            f"{path} is not valid UTF-8: {e}",
            context=ErrorContext(metadata={"path": str(path)}),
            cause=e,
        ) from e


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(_read_text(path))
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Invalid YAML in {path}: {e}",
            context=ErrorContext(metadata={"path": str(path)}),
            cause=e,
        ) from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Top level of {path} must be a mapping, got {type(data).__name__}",
            context=ErrorContext(metadata={"path": str(path)}),
        )
    return data


def load_config(*paths: str | Path) -> ConfigNode:
    """Load configuration files in order into one ``ConfigNode`` tree.

    Missing files are logged and skipped. Later files override earlier ones.

    Raises:
        ConfigurationError: If a file is not UTF-8 or a YAML file is malformed
    """
    root = ConfigNode()
    for entry in paths:
        path = Path(entry)
        if not path.is_file():
            logger.error("config.file_missing", path=str(path))
            continue
        if path.suffix.lower() in _YAML_SUFFIXES:
            root.merge(_read_yaml(path))
        else:
            root.merge(parse_properties(_read_text(path)))
        logger.debug("config.file_loaded", path=str(path))
    return root


__all__ = ["load_config", "parse_properties"]
