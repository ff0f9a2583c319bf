"""Configuration for hostpulse."""

import os
from dataclasses import dataclass

from hostpulse.models import TOP_PROCESSES

# Smallest interval at which per-core CPU percentages are meaningful
MINIMUM_CPU_UPDATE_INTERVAL = 0.2

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 7032
DEFAULT_INTERVAL = MINIMUM_CPU_UPDATE_INTERVAL * 3
DEFAULT_DECIMATION = 5

ENV_PREFIX = "HOSTPULSE_"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def parse_log_level(value: str) -> str:
    """
    Normalize a log level name.

    Raises:
        ValueError: If the name is not one of LOG_LEVELS.
    """
    level = value.strip().upper()
    if level not in LOG_LEVELS:
        raise ValueError(
            f"unknown log level {value!r}, expected one of {', '.join(LOG_LEVELS)}"
        )
    return level


@dataclass
class Settings:
    """Runtime settings for the server and sampler."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    interval: float = DEFAULT_INTERVAL
    decimation: int = DEFAULT_DECIMATION
    top_processes: int = TOP_PROCESSES
    channel_capacity: int = 1
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        """Fix out-of-range numbers and reject unknown log levels."""
        if not 0 < self.port < 65536:
            self.port = DEFAULT_PORT
        if self.interval < MINIMUM_CPU_UPDATE_INTERVAL:
            self.interval = MINIMUM_CPU_UPDATE_INTERVAL
        if self.decimation <= 0:
            self.decimation = DEFAULT_DECIMATION
        if self.top_processes <= 0:
            self.top_processes = TOP_PROCESSES
        if self.channel_capacity <= 0:
            self.channel_capacity = 1
        self.log_level = parse_log_level(self.log_level)

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "Settings":
        """
        Build settings from ``HOSTPULSE_*`` environment variables.

        Raises:
            ValueError: If a variable cannot be parsed or names an unknown log level.
        """
        env = os.environ if environ is None else environ
        kwargs: dict[str, object] = {}
        converters = {
            "host": str,
            "port": int,
            "interval": float,
            "decimation": int,
            "top_processes": int,
            "log_level": parse_log_level,
        }
        for field_name, convert in converters.items():
            raw = env.get(ENV_PREFIX + field_name.upper())
            if raw is None or raw == "":
                continue
            try:
                kwargs[field_name] = convert(raw)
            except ValueError as exc:
                raise ValueError(
                    f"Invalid value for {ENV_PREFIX}{field_name.upper()}: {raw!r}"
                ) from exc
        return cls(**kwargs)
