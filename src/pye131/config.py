"""Receiver configuration for pye131."""

from __future__ import annotations

import dataclasses
import json
import os
from pathlib import Path
from typing import Any

from pye131._constants import (
    CHANNEL_COUNT,
    DEFAULT_PORT,
    DEFAULT_PRIORITY,
    MAX_PRIORITY,
    MAX_UNIVERSE,
    MIN_PRIORITY,
    MIN_UNIVERSE,
    NETWORK_DATA_LOSS_TIMEOUT,
)
from pye131.exceptions import E131ConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


# Accepted value types per annotation; bool is never accepted for a number.
_FIELD_TYPES: dict[str, tuple[type, ...]] = {
    "int": (int,),
    "float": (int, float),
    "bool": (bool,),
    "str": (str,),
}


@dataclasses.dataclass(frozen=True)
class ReceiverConfig:
    """Receiver configuration.

    Parameters
    ----------
    universe : int
        Universe number to listen on (1-63999).
    max_sources : int
        Admission ceiling: maximum number of concurrently registered
        sources. Further sources are reported and not admitted.
    ignore_preview_flag : bool
        When ``True`` packets marked as preview data are arbitrated like
        any other packet. When ``False`` they are dropped.
    channel_offset : int
        First channel (0-based) mapped to the output pixels.
    default_priority : int
        Priority of the synthetic seed held by the priority tracker. This
        is the winning priority when no source is registered, so sources
        transmitting below it never reach the channel buffer. Set to ``0``
        to let every source through.
    data_loss_timeout : float
        Seconds without packets after which a source is removed.
    bind_address : str
        Local address the UDP socket binds to.
    port : int
        Local UDP port. Defaults to the IANA E1.31 port; ``0`` binds an ephemeral port.
    join_multicast : bool
        Join the universe's multicast group after binding.
    pixel_count : int
        Number of RGB pixels driven from the channel buffer.
    """

    universe: int = 1
    max_sources: int = 4
    ignore_preview_flag: bool = False
    channel_offset: int = 0
    default_priority: int = DEFAULT_PRIORITY
    data_loss_timeout: float = NETWORK_DATA_LOSS_TIMEOUT
    bind_address: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    join_multicast: bool = False
    pixel_count: int = 8

    def __post_init__(self) -> None:
        for field in dataclasses.fields(self):
            value = getattr(self, field.name)
            expected = _FIELD_TYPES[str(field.type)]
            if not isinstance(value, expected) or (isinstance(value, bool) and bool not in expected):
                raise E131ConfigError(f"{field.name} must be of type {field.type}, got {value!r}")
        object.__setattr__(self, "data_loss_timeout", float(self.data_loss_timeout))

        if not MIN_UNIVERSE <= self.universe <= MAX_UNIVERSE:
            raise E131ConfigError(f"universe must be between {MIN_UNIVERSE} and {MAX_UNIVERSE}, got {self.universe}")
        if self.max_sources < 1:
            raise E131ConfigError(f"max_sources must be at least 1, got {self.max_sources}")
        if not 0 <= self.channel_offset < CHANNEL_COUNT:
            raise E131ConfigError(f"channel_offset must be between 0 and {CHANNEL_COUNT - 1}, got {self.channel_offset}")
        if not MIN_PRIORITY <= self.default_priority <= MAX_PRIORITY:
            raise E131ConfigError(
                f"default_priority must be between {MIN_PRIORITY} and {MAX_PRIORITY}, got {self.default_priority}"
            )
        if self.data_loss_timeout <= 0:
            raise E131ConfigError(f"data_loss_timeout must be positive, got {self.data_loss_timeout}")
        if not 0 <= self.port <= 65535:
            raise E131ConfigError(f"port must be between 0 and 65535, got {self.port}")
        if self.pixel_count < 0:
            raise E131ConfigError(f"pixel_count must not be negative, got {self.pixel_count}")

    @classmethod
    def from_env(cls, **overrides: Any) -> ReceiverConfig:
        """Create configuration from environment variables.

        Reads the optional ``E131_*`` variables. Explicit keyword arguments
        override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        ReceiverConfig
            Populated configuration.

        Raises
        ------
        E131ConfigError
            If a variable cannot be converted or a value is out of range.
        """
        env = os.environ

        _ENV_INT_MAP = {
            "E131_UNIVERSE": "universe",
            "E131_MAX_SOURCES": "max_sources",
            "E131_CHANNEL_OFFSET": "channel_offset",
            "E131_DEFAULT_PRIORITY": "default_priority",
            "E131_PORT": "port",
            "E131_PIXEL_COUNT": "pixel_count",
        }
        _ENV_BOOL_MAP = {
            "E131_IGNORE_PREVIEW_FLAG": ("ignore_preview_flag", False),
            "E131_JOIN_MULTICAST": ("join_multicast", False),
        }

        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_INT_MAP.items():
            val = env.get(env_key)
            if val is None or field_name in overrides:
                continue
            try:
                config_kwargs[field_name] = int(val)
            except ValueError as exc:
                raise E131ConfigError(f"{env_key} must be an integer, got {val!r}") from exc

        for env_key, (field_name, default) in _ENV_BOOL_MAP.items():
            if field_name not in overrides:
                config_kwargs[field_name] = _env_bool(env.get(env_key), default)

        timeout_env = env.get("E131_DATA_LOSS_TIMEOUT")
        if timeout_env is not None and "data_loss_timeout" not in overrides:
            try:
                config_kwargs["data_loss_timeout"] = float(timeout_env)
            except ValueError as exc:
                raise E131ConfigError(f"E131_DATA_LOSS_TIMEOUT must be a number, got {timeout_env!r}") from exc

        bind_env = env.get("E131_BIND_ADDRESS")
        if bind_env is not None and "bind_address" not in overrides:
            config_kwargs["bind_address"] = bind_env

        config_kwargs.update(overrides)

        return cls(**config_kwargs)

    @classmethod
    def from_file(cls, path: str | Path, **overrides: Any) -> ReceiverConfig:
        """Load configuration from a JSON file.

        Explicit keyword arguments override file values. See
        :meth:`read_file` for the accepted layout.
        """
        config_kwargs = cls.read_file(path)
        config_kwargs.update(overrides)
        try:
            return cls(**config_kwargs)
        except TypeError as exc:
            raise E131ConfigError(f"Configuration file {path}: {exc}") from exc

    @classmethod
    def read_file(cls, path: str | Path) -> dict[str, Any]:
        """Read the settings stored in a JSON configuration file.

        The file holds either a flat object of field values or an object
        with an ``"e131"`` section, e.g.::

            {"e131": {"universe": 3, "max_sources": 2, "channel_offset": 0}}

        Unknown keys are rejected.
        """
        try:
            document = json.loads(Path(path).read_text(encoding="utf-8"))
        except OSError as exc:
            raise E131ConfigError(f"Unable to read configuration file {path}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise E131ConfigError(f"Configuration file {path} is not valid JSON: {exc}") from exc

        if not isinstance(document, dict):
            raise E131ConfigError(f"Configuration file {path} must contain a JSON object")
        section = document.get("e131", document)
        if not isinstance(section, dict):
            raise E131ConfigError(f"Configuration file {path}: 'e131' must be an object")

        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(section) - known)
        if unknown:
            raise E131ConfigError(f"Configuration file {path}: unknown settings {', '.join(unknown)}")
        return dict(section)

    def merged(self, **overrides: Any) -> ReceiverConfig:
        """Return a copy with *overrides* applied (``None`` values are skipped)."""
        changes = {key: value for key, value in overrides.items() if value is not None}
        return dataclasses.replace(self, **changes) if changes else self
