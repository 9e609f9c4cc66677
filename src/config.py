"""
Configuration management for the mean-variance frontier engine.

This module provides centralized configuration management with support for
environment variables, configuration files, and default values.
"""

import os
import json
import yaml
from typing import Dict, Any, Optional
from dataclasses import dataclass, asdict
from pathlib import Path


class ConfigurationError(ValueError):
    """Raised for invalid configuration values. Always fatal."""
    pass


SUPPORTED_SOLVERS = ("cvxpy", "scipy")
SUPPORTED_COVARIANCE_METHODS = ("sample", "ledoit_wolf")
SUPPORTED_MISSING_POLICIES = ("pairwise", "complete")
SUPPORTED_TANGENCY_STRATEGIES = ("scan", "direct", "auto")


@dataclass
class MomentConfig:
    """Configuration for moment estimation."""
    periods_per_year: int
    covariance_method: str
    missing_policy: str
    use_excess_returns: bool
    regularization: float


@dataclass
class FrontierConfig:
    """Configuration for frontier construction."""
    no_short: bool
    grid_size: int
    short_return_multiple: float
    return_tolerance: float
    risk_tolerance: float
    psd_tolerance: float
    include_inefficient: bool
    inefficient_fraction: float
    solver: str
    solve_timeout: Optional[float]


@dataclass
class TangencyConfig:
    """Configuration for tangency portfolio selection."""
    strategy: str
    agreement_tolerance: float
    check_agreement: bool


@dataclass
class RollingConfig:
    """Configuration for the rolling window analysis."""
    window_length_years: int
    window_step_years: int


@dataclass
class SystemConfig:
    """Main system configuration."""
    moments: MomentConfig
    frontier: FrontierConfig
    tangency: TangencyConfig
    rolling: RollingConfig
    log_level: str
    n_jobs: int

    def validate(self) -> None:
        """Raise ConfigurationError if any setting cannot be used."""
        errors = []

        if self.moments.periods_per_year <= 0:
            errors.append(f"periods_per_year must be positive, got {self.moments.periods_per_year}")
        if self.moments.covariance_method not in SUPPORTED_COVARIANCE_METHODS:
            errors.append(f"Unknown covariance method: {self.moments.covariance_method}")
        if self.moments.missing_policy not in SUPPORTED_MISSING_POLICIES:
            errors.append(f"Unknown missing-data policy: {self.moments.missing_policy}")
        if self.moments.regularization < 0:
            errors.append("regularization must be non-negative")

        if self.frontier.grid_size <= 0:
            errors.append(f"grid_size must be positive, got {self.frontier.grid_size}")
        if self.frontier.short_return_multiple < 1.0:
            errors.append("short_return_multiple must be at least 1.0")
        if self.frontier.solver not in SUPPORTED_SOLVERS:
            errors.append(f"Unknown solver: {self.frontier.solver}")
        if self.frontier.solve_timeout is not None and self.frontier.solve_timeout <= 0:
            errors.append("solve_timeout must be positive when set")

        if self.tangency.strategy not in SUPPORTED_TANGENCY_STRATEGIES:
            errors.append(f"Unknown tangency strategy: {self.tangency.strategy}")

        if self.rolling.window_length_years <= 0:
            errors.append(f"window_length_years must be positive, got {self.rolling.window_length_years}")
        if self.rolling.window_step_years <= 0:
            errors.append(f"window_step_years must be positive, got {self.rolling.window_step_years}")

        if self.n_jobs == 0:
            errors.append("n_jobs must be non-zero")

        if errors:
            raise ConfigurationError("; ".join(errors))


class ConfigManager:
    """Manages system configuration with multiple sources."""

    def __init__(self, config_file: Optional[str] = None):
        """Initialize configuration manager.

        Args:
            config_file: Path to configuration file (JSON or YAML)
        """
        self.config_file = config_file
        self._config = self._load_config()

    def _load_config(self) -> SystemConfig:
        """Load configuration from file and environment variables."""
        config_dict = self._get_default_config()

        if self.config_file:
            if not os.path.exists(self.config_file):
                raise ConfigurationError(f"Config file not found: {self.config_file}")
            file_config = self._load_config_file(self.config_file)
            config_dict = self._merge_configs(config_dict, file_config or {})

        env_config = self._load_env_config()
        config_dict = self._merge_configs(config_dict, env_config)

        config = self._dict_to_config(config_dict)
        config.validate()
        return config

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration values."""
        return {
            "moments": {
                "periods_per_year": 12,
                "covariance_method": "sample",
                "missing_policy": "complete",
                "use_excess_returns": False,
                "regularization": 0.0
            },
            "frontier": {
                "no_short": False,
                "grid_size": 100,
                "short_return_multiple": 2.0,
                "return_tolerance": 1e-8,
                "risk_tolerance": 1e-6,
                "psd_tolerance": 1e-10,
                "include_inefficient": False,
                "inefficient_fraction": 0.25,
                "solver": "cvxpy",
                "solve_timeout": None
            },
            "tangency": {
                "strategy": "auto",
                "agreement_tolerance": 1e-3,
                "check_agreement": True
            },
            "rolling": {
                "window_length_years": 5,
                "window_step_years": 1
            },
            "log_level": "INFO",
            "n_jobs": 1
        }

    def _load_config_file(self, config_file: str) -> Dict[str, Any]:
        """Load configuration from JSON or YAML file."""
        file_path = Path(config_file)

        with open(file_path, 'r') as f:
            if file_path.suffix.lower() in ['.yaml', '.yml']:
                return yaml.safe_load(f)
            elif file_path.suffix.lower() == '.json':
                return json.load(f)
            else:
                raise ConfigurationError(f"Unsupported config file format: {file_path.suffix}")

    def _load_env_config(self) -> Dict[str, Any]:
        """Load configuration from environment variables."""
        env_config = {}

        env_mappings = {
            "MVF_LOG_LEVEL": ("log_level",),
            "MVF_N_JOBS": ("n_jobs",),
            "MVF_PERIODS_PER_YEAR": ("moments", "periods_per_year"),
            "MVF_NO_SHORT": ("frontier", "no_short"),
            "MVF_GRID_SIZE": ("frontier", "grid_size"),
            "MVF_SOLVER": ("frontier", "solver"),
            "MVF_WINDOW_LENGTH_YEARS": ("rolling", "window_length_years"),
            "MVF_WINDOW_STEP_YEARS": ("rolling", "window_step_years")
        }

        for env_var, config_path in env_mappings.items():
            if env_var in os.environ:
                value = os.environ[env_var]

                # Convert string values to appropriate types
                try:
                    if config_path[-1] in ["n_jobs", "periods_per_year", "grid_size",
                                           "window_length_years", "window_step_years"]:
                        value = int(value)
                    elif config_path[-1] == "no_short":
                        value = value.strip().lower() in ("1", "true", "yes", "on")
                except ValueError:
                    raise ConfigurationError(f"Invalid value for {env_var}: {value!r}")

                current = env_config
                for key in config_path[:-1]:
                    if key not in current:
                        current[key] = {}
                    current = current[key]
                current[config_path[-1]] = value

        return env_config

    def _merge_configs(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge configuration dictionaries."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_configs(result[key], value)
            else:
                result[key] = value

        return result

    def _dict_to_config(self, config_dict: Dict[str, Any]) -> SystemConfig:
        """Convert dictionary to SystemConfig dataclass."""
        try:
            return SystemConfig(
                moments=MomentConfig(**config_dict["moments"]),
                frontier=FrontierConfig(**config_dict["frontier"]),
                tangency=TangencyConfig(**config_dict["tangency"]),
                rolling=RollingConfig(**config_dict["rolling"]),
                log_level=config_dict["log_level"],
                n_jobs=config_dict["n_jobs"]
            )
        except (KeyError, TypeError) as e:
            raise ConfigurationError(f"Malformed configuration: {e}")

    @property
    def config(self) -> SystemConfig:
        """Get current configuration."""
        return self._config

    def save_config(self, output_file: str) -> None:
        """Save current configuration to file."""
        config_dict = asdict(self._config)

        file_path = Path(output_file)
        with open(file_path, 'w') as f:
            if file_path.suffix.lower() in ['.yaml', '.yml']:
                yaml.dump(config_dict, f, default_flow_style=False, indent=2)
            elif file_path.suffix.lower() == '.json':
                json.dump(config_dict, f, indent=2)
            else:
                raise ConfigurationError(f"Unsupported output format: {file_path.suffix}")

    def update_config(self, **kwargs) -> None:
        """Update configuration values."""
        config_dict = asdict(self._config)

        for key, value in kwargs.items():
            if '.' in key:
                # Handle nested keys like 'frontier.grid_size'
                keys = key.split('.')
                current = config_dict
                for k in keys[:-1]:
                    current = current[k]
                current[keys[-1]] = value
            else:
                config_dict[key] = value

        new_config = self._dict_to_config(config_dict)
        new_config.validate()
        self._config = new_config


# Global configuration instance
_config_manager = None


def get_config(config_file: Optional[str] = None) -> SystemConfig:
    """Get global configuration instance."""
    global _config_manager

    if _config_manager is None:
        _config_manager = ConfigManager(config_file)

    return _config_manager.config


def update_config(**kwargs) -> None:
    """Update global configuration."""
    global _config_manager

    if _config_manager is None:
        _config_manager = ConfigManager()

    _config_manager.update_config(**kwargs)


def reset_config() -> None:
    """Drop the global configuration so the next get_config() reloads it."""
    global _config_manager
    _config_manager = None
