"""
Runtime configuration.

Settings are merged from, lowest precedence first: built-in defaults, an
optional YAML file, ``DHTMSG_*`` environment variables (a ``.env`` file in
the working directory is read too) and command-line flags.
"""

import dataclasses
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import yaml
from dotenv import dotenv_values, find_dotenv

from .errors import ConfigError
from .networking.directory import parse_address
from .networking.ports import PortStrategy

logger = logging.getLogger(__name__)

ENV_PREFIX = "DHTMSG_"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class NodeConfig:
    """Validated settings for one node."""

    identity: Optional[str] = None
    peer: Optional[str] = None
    announce_interval: float = 45.0
    poll_interval: float = 5.0
    port_strategy: PortStrategy = PortStrategy.PROBE
    bind_host: str = '0.0.0.0'
    dht_port: int = 0
    bootstrap_nodes: List[Tuple[str, int]] = field(default_factory=list)
    advertise_host: Optional[str] = None
    warmup: float = 2.0
    request_timeout: float = 10.0
    log_level: str = "INFO"

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "NodeConfig":
        """Build a config from loosely typed values (YAML, env, CLI).

        Raises:
            ConfigError: On unknown keys or values of the wrong type
        """
        known = {f.name: f for f in dataclasses.fields(cls)}
        unknown = set(data) - set(known)
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

        values = {}
        for name, raw in data.items():
            if raw is None:
                continue
            try:
                values[name] = _coerce(name, raw)
            except (TypeError, ValueError) as e:
                raise ConfigError(f"Invalid value for {name}: {raw!r} ({e})") from e
        return cls(**values).validate()

    def validate(self) -> "NodeConfig":
        """Check value ranges.

        Returns:
            self, for chaining

        Raises:
            ConfigError: If a value is out of range
        """
        for name in ("announce_interval", "warmup"):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must not be negative")
        for name in ("poll_interval", "request_timeout"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive")
        if not 0 <= self.dht_port < 65536:
            raise ConfigError(f"dht_port out of range: {self.dht_port}")
        if self.log_level not in LOG_LEVELS:
            raise ConfigError(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        return self


def _parse_bootstrap(raw: Union[str, List[Any]]) -> List[Tuple[str, int]]:
    if isinstance(raw, str):
        raw = [part for part in raw.split(",") if part.strip()]
    nodes = []
    for entry in raw:
        if isinstance(entry, (list, tuple)):
            host, port = entry
            nodes.append((str(host), int(port)))
        else:
            nodes.append(tuple(parse_address(str(entry))))
    return nodes


def _coerce(name: str, raw: Any) -> Any:
    if name in ("announce_interval", "poll_interval", "warmup", "request_timeout"):
        return float(raw)
    if name == "dht_port":
        return int(raw)
    if name == "port_strategy":
        return PortStrategy(str(raw).lower())
    if name == "bootstrap_nodes":
        return _parse_bootstrap(raw)
    if name == "log_level":
        return str(raw).upper()
    return str(raw)


def load_yaml_config(path: Union[str, Path]) -> Dict[str, Any]:
    """Read settings from a YAML file.

    Raises:
        ConfigError: If the file cannot be read or is not a mapping
    """
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to load config file {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    return data


def load_env_config(environ: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """Collect ``DHTMSG_*`` settings.

    Args:
        environ: Variables to read. If None, the process environment is
            used, layered over a ``.env`` file found from the working
            directory.

    Returns:
        Settings keyed by lowercase field name
    """
    if environ is None:
        dotenv_path = find_dotenv(usecwd=True)
        file_values = dotenv_values(dotenv_path) if dotenv_path else {}
        environ = {**{k: v for k, v in file_values.items() if v is not None}, **os.environ}

    fields = {f.name for f in dataclasses.fields(NodeConfig)}
    settings = {}
    for key, value in environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        name = key[len(ENV_PREFIX):].lower()
        if name in fields:
            settings[name] = value
        else:
            logger.warning(f"Ignoring unknown environment setting {key}")
    return settings


def load_config(overrides: Optional[Mapping[str, Any]] = None,
                config_path: Optional[Union[str, Path]] = None,
                environ: Optional[Mapping[str, str]] = None) -> NodeConfig:
    """Merge every configuration source into a NodeConfig.

    Args:
        overrides: Highest-precedence values, usually from the command
            line; None values are ignored
        config_path: Optional YAML file
        environ: Environment to read, see load_env_config

    Raises:
        ConfigError: If any source is invalid
    """
    data: Dict[str, Any] = {}
    if config_path:
        data.update(load_yaml_config(config_path))
    data.update(load_env_config(environ))
    if overrides:
        data.update({k: v for k, v in overrides.items() if v is not None})
    return NodeConfig.from_mapping(data)
