"""Configuration management for the MCP router.

This module provides the router configuration dataclass. Values come from
defaults, from a plain dict (e.g. a JSON settings file) or from process
environment variables
(``MAX_CONCURRENT_PROCESSES``, ``REQUEST_TIMEOUT``, ``PROCESS_IDLE_TIMEOUT``).

Durations are stored in seconds. Environment variables carry milliseconds.
"""

import os
from dataclasses import dataclass, field, asdict
from typing import Literal, Mapping, Optional

# Locale settings forced on every worker so stdio stays UTF-8
WORKER_BASE_ENV: dict[str, str] = {
    "LANG": "C.UTF-8",
    "LC_ALL": "C.UTF-8",
    "PYTHONIOENCODING": "utf-8",
}


@dataclass
class Config:
    """
    Router configuration.

    All fields have sensible defaults - the router works without any
    configuration beyond a service registry.
    """

    # Transient strategy: max simultaneously spawned per-request processes
    max_concurrent_processes: int = 10

    # Response window for a single request (seconds)
    request_timeout: float = 30.0

    # Persistent strategy: evict workers unused for longer than this (seconds)
    idle_timeout: float = 60.0

    # How often the idle reaper sweeps (seconds)
    reap_interval: float = 30.0

    # Transient strategy: assume a silent worker is ready after this (seconds)
    ready_grace_period: float = 1.0

    # Persistent strategy: settle delay after the initialize handshake (seconds)
    post_init_delay: float = 0.1

    # Wait this long after SIGTERM before sending SIGKILL (seconds)
    kill_timeout: float = 5.0

    # Protocol version announced in the initialize handshake
    protocol_version: str = "2024-11-05"

    # Strategy used by the gateway for tool calls
    default_strategy: Literal["persistent", "transient"] = "persistent"

    # Gateway listener
    http_host: str = "127.0.0.1"
    http_port: int = 3000

    # JSON file holding service definitions
    services_file: Optional[str] = None

    # Extra environment merged under every service's own env overrides
    worker_env: dict[str, str] = field(default_factory=dict)

    def is_valid(self) -> tuple[bool, str]:
        """
        Check if config values are usable.

        Returns:
            Tuple of (is_valid, error_message). If valid, error_message is empty string.

        Examples:
            >>> Config().is_valid()
            (True, '')

            >>> Config(max_concurrent_processes=0).is_valid()
            (False, 'max_concurrent_processes must be at least 1')
        """
        if self.max_concurrent_processes < 1:
            return False, "max_concurrent_processes must be at least 1"
        for name in ("request_timeout", "idle_timeout", "reap_interval", "kill_timeout"):
            if getattr(self, name) <= 0:
                return False, f"{name} must be positive"
        if self.ready_grace_period < 0 or self.post_init_delay < 0:
            return False, "ready_grace_period and post_init_delay must not be negative"
        if not (1 <= self.http_port <= 65535):
            return False, "Port must be between 1 and 65535"
        if self.default_strategy not in ("persistent", "transient"):
            return False, f"Unknown strategy: {self.default_strategy}"
        return True, ""

    def to_dict(self) -> dict:
        """
        Convert to dict for JSON serialization.

        Returns:
            Dictionary representation of config.
        """
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Config":
        """
        Create from dict, using defaults for missing keys.

        Only includes keys that are actual dataclass fields, ignoring
        any extra keys in the input dict.

        Args:
            data: Dictionary with config values (typically from JSON).

        Returns:
            Config instance with provided values merged with defaults.

        Examples:
            >>> Config.from_dict({"http_port": 8080}).http_port
            8080

            >>> Config.from_dict({"unknown_field": "ignored"}).http_port
            3000
        """
        return cls(
            **{k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Config":
        """
        Create from environment variables, using defaults for missing ones.

        Millisecond variables (``REQUEST_TIMEOUT``, ``PROCESS_IDLE_TIMEOUT``,
        ``PROCESS_REAP_INTERVAL``, ``READY_GRACE_PERIOD``) are converted to
        seconds.

        Args:
            environ: Mapping to read from. Defaults to ``os.environ``.

        Raises:
            ValueError: If a variable holds a non-numeric value.
        """
        env = os.environ if environ is None else environ
        data: dict = {}

        if env.get("MAX_CONCURRENT_PROCESSES"):
            data["max_concurrent_processes"] = int(env["MAX_CONCURRENT_PROCESSES"])

        ms_vars = {
            "REQUEST_TIMEOUT": "request_timeout",
            "PROCESS_IDLE_TIMEOUT": "idle_timeout",
            "PROCESS_REAP_INTERVAL": "reap_interval",
            "READY_GRACE_PERIOD": "ready_grace_period",
        }
        for var, name in ms_vars.items():
            if env.get(var):
                data[name] = int(env[var]) / 1000.0

        if env.get("HOST"):
            data["http_host"] = env["HOST"]
        if env.get("PORT"):
            data["http_port"] = int(env["PORT"])
        if env.get("MCP_SERVICES_FILE"):
            data["services_file"] = env["MCP_SERVICES_FILE"]

        return cls.from_dict(data)

    def build_worker_env(self, overrides: Mapping[str, str]) -> dict[str, str]:
        """
        Build the full environment for one worker process.

        Layering (later wins): router process env, UTF-8 locale defaults,
        ``worker_env``, then the service's own overrides.
        """
        env = dict(os.environ)
        env.update(WORKER_BASE_ENV)
        env.update(self.worker_env)
        env.update({str(k): str(v) for k, v in overrides.items()})
        return env
