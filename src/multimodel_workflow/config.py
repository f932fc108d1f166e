"""Configuration system using platformdirs for cross-platform paths."""

import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import platformdirs

from .clients.router import ProviderConfig
from .context.budget import ContextBudgetSettings
from .plans.models import WorkflowConfig

APP_NAME = "multimodel-workflow"
APP_AUTHOR = "multimodel-workflow"

logger = logging.getLogger(__name__)


@dataclass
class Config:
	"""Central configuration with XDG/platform conventions."""

	config_dir: Path = field(default_factory=lambda: Path(platformdirs.user_config_dir(APP_NAME)))
	data_dir: Path = field(default_factory=lambda: Path(platformdirs.user_data_dir(APP_NAME)))

	# Derived paths
	config_file: Path = field(init=False)
	workflows_db_path: Path = field(init=False)
	log_dir: Path = field(init=False)

	# User-configurable
	log_level: str = "INFO"

	def __post_init__(self) -> None:
		self.config_file = self.config_dir / "config.toml"
		self.workflows_db_path = self.data_dir / "workflows.db"
		self.log_dir = self.data_dir / "logs"

	def ensure_dirs(self) -> None:
		"""Create all required directories."""
		self.config_dir.mkdir(parents=True, exist_ok=True)
		self.data_dir.mkdir(parents=True, exist_ok=True)
		self.log_dir.mkdir(parents=True, exist_ok=True)


@dataclass
class WorkflowSettings:
	"""Workflow, provider and context settings read from config.toml."""

	workflow: Optional[WorkflowConfig] = None
	providers: list[ProviderConfig] = field(default_factory=list)
	context: ContextBudgetSettings = field(default_factory=ContextBudgetSettings)


def _read_toml(path: Path) -> dict[str, Any]:
	if not path.exists():
		return {}
	with open(path, "rb") as f:
		return tomllib.load(f)


def _apply_env_overrides(config: Config) -> Config:
	"""Apply MULTIMODEL_WORKFLOW_* environment variable overrides."""
	env_map = {
		"MULTIMODEL_WORKFLOW_CONFIG_DIR": "config_dir",
		"MULTIMODEL_WORKFLOW_DATA_DIR": "data_dir",
	}
	for env_key, attr in env_map.items():
		val = os.getenv(env_key)
		if val:
			setattr(config, attr, Path(val))

	log_level = os.getenv("MULTIMODEL_WORKFLOW_LOG_LEVEL")
	if log_level:
		config.log_level = log_level.upper()

	# Recompute derived paths after overrides
	config.__post_init__()
	return config


def _apply_toml(config: Config) -> Config:
	"""Apply top-level config.toml keys if the file exists."""
	data = _read_toml(config.config_file)

	path_fields = {"config_dir", "data_dir"}
	for key, val in data.items():
		if isinstance(val, (dict, list)):
			# [workflow], [[providers]] and [context] are read by load_workflow_settings
			continue
		if key in path_fields:
			setattr(config, key, Path(os.path.expanduser(val)))
		elif key == "log_level":
			config.log_level = str(val).upper()

	# Recompute derived paths after toml overrides
	config.__post_init__()
	return config


def load_config() -> Config:
	"""Load config with precedence: env vars > config.toml > defaults."""
	config = Config()
	# The config dir itself may be overridden from the environment
	config = _apply_env_overrides(config)
	config = _apply_toml(config)
	config = _apply_env_overrides(config)
	config.ensure_dirs()
	return config


def load_workflow_settings(config: Config) -> WorkflowSettings:
	"""
	Read the [workflow], [[providers]] and [context] tables of config.toml.

	Raises:
		pydantic.ValidationError: If a table holds invalid values
	"""
	data = _read_toml(config.config_file)

	workflow_data = data.get("workflow")
	settings = WorkflowSettings(
		workflow=WorkflowConfig.model_validate(workflow_data) if workflow_data is not None else None,
		providers=[ProviderConfig.model_validate(p) for p in data.get("providers", [])],
		context=ContextBudgetSettings.model_validate(data.get("context", {})),
	)

	logger.debug(
		f"Loaded workflow settings from {config.config_file}: "
		f"workflow={'yes' if settings.workflow else 'no'}, {len(settings.providers)} providers"
	)
	return settings
