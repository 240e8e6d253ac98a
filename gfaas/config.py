"""
Run configuration

Resolved once per process and passed into every component. Nothing below
reads the environment after RunConfig.from_env() returns.
"""
import os
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from .errors import ConfigError


class RunMode(Enum):
    """Where jobs are executed"""
    LOCAL = "local"
    REMOTE = "remote"

    @classmethod
    def parse(cls, value: str) -> "RunMode":
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ConfigError(f"Unsupported run mode: {value!r}")


# Conventional marketplace minimums
MIN_MEMORY_GIB = 0.5
MIN_STORAGE_GIB = 1.0
DEFAULT_PRICING_MODEL = "linear"
DEFAULT_BUDGET = 5
DEFAULT_SUBNET = "devnet-alpha.2"
DEFAULT_TIMEOUT = 300


def default_datadir() -> Path:
    """Default marketplace data directory"""
    base = os.getenv("XDG_DATA_HOME") or os.path.expanduser("~/.local/share")
    return Path(base) / "golem" / "default"


@dataclass(frozen=True)
class ResourceConstraints:
    """Minimum resources a provider has to offer"""
    min_memory_gib: float = MIN_MEMORY_GIB
    min_storage_gib: float = MIN_STORAGE_GIB
    pricing_model: str = DEFAULT_PRICING_MODEL

    def __post_init__(self):
        if self.min_memory_gib < 0:
            raise ConfigError("min_memory_gib must not be negative")
        if self.min_storage_gib < 0:
            raise ConfigError("min_storage_gib must not be negative")
        if not self.pricing_model:
            raise ConfigError("pricing_model must not be empty")


@dataclass(frozen=True)
class RunConfig:
    """Main configuration for job execution"""
    mode: RunMode = RunMode.REMOTE
    data_dir: Path = field(default_factory=default_datadir)
    budget: int = DEFAULT_BUDGET
    constraints: ResourceConstraints = field(default_factory=ResourceConstraints)
    network_tag: str = DEFAULT_SUBNET
    timeout_seconds: float = DEFAULT_TIMEOUT
    module_dir: Path = Path("target") / "debug"

    def __post_init__(self):
        if isinstance(self.budget, bool) or not isinstance(self.budget, int):
            raise ConfigError(f"budget must be an integer, got {self.budget!r}")
        if self.budget < 0:
            raise ConfigError("budget must not be negative")
        if self.timeout_seconds <= 0:
            raise ConfigError("timeout_seconds must be positive")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "RunConfig":
        """
        Create config from environment variables.

        Args:
            environ: Mapping to read instead of os.environ
            **overrides: Explicit values that win over the environment

        Returns:
            Resolved RunConfig

        Raises:
            ConfigError: If a variable holds an invalid value
        """
        env = os.environ if environ is None else environ

        if "GFAAS_RUN" in env:
            mode = RunMode.parse(env["GFAAS_RUN"])
        elif "GFAAS_LOCAL" in env:
            # Legacy switch, any value selects local mode
            mode = RunMode.LOCAL
        else:
            mode = RunMode.REMOTE

        values: Dict[str, Any] = {
            "mode": mode,
            "data_dir": Path(env["GFAAS_DATADIR"]) if env.get("GFAAS_DATADIR") else default_datadir(),
            "budget": _parse_int(env, "GFAAS_BUDGET", DEFAULT_BUDGET),
            "constraints": ResourceConstraints(
                min_memory_gib=_parse_float(env, "GFAAS_MIN_MEM_GIB", MIN_MEMORY_GIB),
                min_storage_gib=_parse_float(env, "GFAAS_MIN_STORAGE_GIB", MIN_STORAGE_GIB),
                pricing_model=env.get("GFAAS_PRICING_MODEL", DEFAULT_PRICING_MODEL),
            ),
            "network_tag": env.get("GFAAS_SUBNET", DEFAULT_SUBNET),
            "timeout_seconds": _parse_float(env, "GFAAS_TIMEOUT", DEFAULT_TIMEOUT),
            "module_dir": Path(env.get("GFAAS_OUT_DIR", str(Path("target") / "debug"))),
        }
        if "mode" in overrides and isinstance(overrides["mode"], str):
            overrides["mode"] = RunMode.parse(overrides["mode"])
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def with_mode(self, mode: RunMode) -> "RunConfig":
        """Return a copy running in the given mode"""
        return replace(self, mode=mode)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging"""
        return {
            "mode": self.mode.value,
            "data_dir": str(self.data_dir),
            "budget": self.budget,
            "min_memory_gib": self.constraints.min_memory_gib,
            "min_storage_gib": self.constraints.min_storage_gib,
            "pricing_model": self.constraints.pricing_model,
            "network_tag": self.network_tag,
            "timeout_seconds": self.timeout_seconds,
            "module_dir": str(self.module_dir),
        }


def _parse_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {raw!r}")


def _parse_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{key} must be a number, got {raw!r}")


_run_config: Optional[RunConfig] = None


def get_run_config() -> RunConfig:
    """Process-wide RunConfig, resolved from the environment on first use"""
    global _run_config
    if _run_config is None:
        _run_config = RunConfig.from_env()
    return _run_config


def set_run_config(config: Optional[RunConfig]) -> None:
    """Install an explicit process-wide RunConfig (None resets it)"""
    global _run_config
    _run_config = config
