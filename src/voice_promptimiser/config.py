"""Runtime configuration: an optional YAML file, overridden by environment variables."""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping

import yaml

from voice_promptimiser.core.suite_entities import TestCategory

ENV_OVERRIDES = {
    "LITELLM_MODEL": "model",
    "LLM_MODEL": "model",  # wins over LITELLM_MODEL when both are set
    "LLM_API_KEY": "api_key",
    "LLM_API_BASE": "api_base",
    "VOICE_PROMPTIMISER_DB_DIR": "db_dir",
    "VOICE_PROMPTIMISER_ENCRYPTION_KEY": "encryption_key",
    "TARGET_AGENT_MODE": "target_agent_mode",
    "TARGET_AGENT_BASE_URL": "target_agent_base_url",
    "TARGET_AGENT_API_KEY": "target_agent_api_key",
}

TARGET_AGENT_MODES = ("simulated", "http")


@dataclass
class OptimiserConfig:
    # generator
    model: str | None = None
    api_key: str | None = None
    api_base: str | None = None
    analysis_temperature: float = 0.2
    synthesis_temperature: float = 0.7
    judge_temperature: float = 0.1
    insights_temperature: float = 0.3
    optimize_temperature: float = 0.4
    max_tokens: int = 4096
    synthesis_max_tokens: int = 8000
    optimize_max_tokens: int = 8000
    max_attempts: int = 3
    max_rate_limit_waits: int = 5
    default_retry_after: float = 60.0

    # storage
    db_dir: str = ".voice_promptimiser"
    encryption_key: str | None = None

    # target agent
    target_agent_mode: str = "simulated"
    target_agent_base_url: str | None = None
    target_agent_api_key: str | None = None
    scenario_path: str | None = None
    agent_cache_ttl: float = 300.0

    # test generation and optimisation
    categories: list[str] = field(default_factory=lambda: ["happy-path", "edge-case", "adversarial"])
    cases_per_category: int = 2
    min_prompt_length: int = 20
    pass_threshold: float = 0.7
    max_iterations: int = 2
    batch_concurrency: int = 1
    restore_best_on_regression: bool = True

    @property
    def test_categories(self) -> list[TestCategory]:
        return [TestCategory(c) for c in self.categories]

    @property
    def db_path(self) -> Path:
        return Path(self.db_dir) / "voice_promptimiser.json"

    def validate(self) -> None:
        if self.target_agent_mode not in TARGET_AGENT_MODES:
            raise ValueError(
                f"target_agent_mode must be one of {', '.join(TARGET_AGENT_MODES)}, got '{self.target_agent_mode}'"
            )
        if self.target_agent_mode == "http" and not self.target_agent_base_url:
            raise ValueError("target_agent_base_url is required when target_agent_mode is 'http'")
        for category in self.categories:
            TestCategory(category)
        if not 0.0 <= self.pass_threshold <= 1.0:
            raise ValueError(f"pass_threshold must be within [0, 1], got {self.pass_threshold}")
        if self.max_attempts < 1 or self.cases_per_category < 1 or self.batch_concurrency < 1:
            raise ValueError("max_attempts, cases_per_category and batch_concurrency must be at least 1")
        if self.max_iterations < 0:
            raise ValueError("max_iterations cannot be negative")


def load_config(
    file_path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
) -> OptimiserConfig:
    """
    Build the configuration from defaults, an optional YAML file and the environment.

    Raises:
        FileNotFoundError: If a config file was given but doesn't exist
        ValueError: If the YAML has unknown keys or the result is invalid
    """
    env = os.environ if env is None else env
    values: dict[str, Any] = {}

    if file_path is not None:
        path = Path(file_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {file_path}")
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Expected YAML root to be a dict, got {type(data)}")

        known = {f.name for f in fields(OptimiserConfig)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown config key(s): {', '.join(unknown)}")
        values.update(data)

    for env_name, attr in ENV_OVERRIDES.items():
        if env.get(env_name):
            values[attr] = env[env_name]

    config = OptimiserConfig(**values)
    config.validate()
    return config
