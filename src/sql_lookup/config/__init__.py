"""Configuration tree and file loading."""

from sql_lookup.config.loader import load_config, parse_properties
from sql_lookup.config.tree import ConfigNode

__all__ = ["ConfigNode", "load_config", "parse_properties"]
