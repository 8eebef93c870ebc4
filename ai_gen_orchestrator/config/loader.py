"""
Configuration management and loading.

Handles orchestrator settings, cost policy files and environment variables.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ai_gen_orchestrator.core.jobs import PollingPolicy
from ai_gen_orchestrator.core.pricing import CostPolicy, parse_cost_policy
from ai_gen_orchestrator.providers.kie_base import DEFAULT_BASE_URL, DEFAULT_UPLOAD_BASE_URL
from ai_gen_orchestrator.storage.db import DEFAULT_DB_PATH

DEFAULT_API_KEY_ENV = "KIEAI_API_KEY"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class DatabaseConfig:
    """Location of the SQLite database."""
    path: str = DEFAULT_DB_PATH

    def __post_init__(self):
        if not self.path or not self.path.strip():
            raise ValueError("database path cannot be empty")


@dataclass(frozen=True)
class KieProviderConfig:
    """Connection settings for the Kie generation API."""
    base_url: str = DEFAULT_BASE_URL
    upload_base_url: str = DEFAULT_UPLOAD_BASE_URL
    api_key_env: str = DEFAULT_API_KEY_ENV
    timeout_seconds: float = 30.0

    def __post_init__(self):
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")

    def resolve_api_key(self) -> str:
        """Read the API key from the configured environment variable.

        Raises:
            ValueError: If the variable is unset or empty
        """
        api_key = os.environ.get(self.api_key_env, "").strip()
        if not api_key:
            raise ValueError(f"Environment variable {self.api_key_env} is not set")
        return api_key


@dataclass(frozen=True)
class PollingSettings:
    """Polling overrides layered over each variant's own policy.

    Precedence: per-variant override, then the global default override, then
    the variant's policy. The result is clamped under the request ceiling.
    """
    defaults: Optional[PollingPolicy] = None
    variants: Dict[str, PollingPolicy] = field(default_factory=dict)
    request_ceiling_seconds: Optional[float] = None

    def __post_init__(self):
        if self.request_ceiling_seconds is not None and self.request_ceiling_seconds <= 0:
            raise ValueError("request_ceiling_seconds must be > 0")

    def policy_for(self, model_id: str, variant_id: str, variant_policy: PollingPolicy) -> PollingPolicy:
        override = self.variants.get(f"{model_id}/{variant_id}")
        if override is not None:
            return override
        return self.defaults or variant_policy

    def clamp(self, policy: PollingPolicy) -> PollingPolicy:
        return policy.clamped_to(self.request_ceiling_seconds)


@dataclass(frozen=True)
class PricingConfig:
    cache_ttl_seconds: float = 60.0

    def __post_init__(self):
        if self.cache_ttl_seconds < 0:
            raise ValueError("cache_ttl_seconds must be >= 0")


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    jsonl_path: Optional[str] = None

    def __post_init__(self):
        if self.level not in LOG_LEVELS:
            raise ValueError(f"logging level must be one of: {list(LOG_LEVELS)}")


@dataclass(frozen=True)
class OrchestratorConfig:
    """Complete orchestrator configuration."""
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    kie: KieProviderConfig = field(default_factory=KieProviderConfig)
    polling: PollingSettings = field(default_factory=PollingSettings)
    pricing: PricingConfig = field(default_factory=PricingConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def default(cls) -> "OrchestratorConfig":
        return cls()


def _read_yaml(path: str, label: str) -> Any:
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"{label} file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            return yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in {label.lower()} file {path}: {e}")


def _section(data: Dict, key: str, allowed_keys: set, path: str) -> Dict:
    value = data.get(key, {})
    if value is None:
        value = {}
    if not isinstance(value, dict):
        raise ValueError(f"'{path}' must be a dictionary")
    unknown_keys = set(value.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")
    return value


def _positive_number(value: Any, path: str, allow_zero: bool = False) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{path}' must be a number")
    if value < 0 or (value == 0 and not allow_zero):
        raise ValueError(f"'{path}' must be {'>= 0' if allow_zero else '> 0'}")
    return float(value)


def _string(value: Any, path: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"'{path}' must be a non-empty string")
    return value


def _parse_polling_policy(data: Any, path: str) -> PollingPolicy:
    if not isinstance(data, dict):
        raise ValueError(f"'{path}' must be a dictionary")
    unknown_keys = set(data.keys()) - {'interval_seconds', 'max_attempts'}
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")
    for key in ('interval_seconds', 'max_attempts'):
        if key not in data:
            raise ValueError(f"Missing required '{key}' in {path}")

    max_attempts = data['max_attempts']
    if isinstance(max_attempts, bool) or not isinstance(max_attempts, int) or max_attempts <= 0:
        raise ValueError(f"'{path}.max_attempts' must be a positive integer")

    return PollingPolicy(
        interval_seconds=_positive_number(data['interval_seconds'], f"{path}.interval_seconds", allow_zero=True),
        max_attempts=max_attempts,
    )


def load_orchestrator_config(path: str) -> OrchestratorConfig:
    """Load and validate orchestrator configuration from a YAML file.

    Strict validation: unknown keys are rejected so a misspelled setting
    never silently falls back to a default.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated OrchestratorConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    raw_config = _read_yaml(path, "Orchestrator config")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    allowed_top_keys = {'database', 'providers', 'polling', 'pricing', 'logging'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    if 'database' not in raw_config:
        raise ValueError("Missing required 'database' section")
    database_data = _section(raw_config, 'database', {'path'}, 'database')
    if 'path' not in database_data:
        raise ValueError("Missing required 'path' in database")
    database = DatabaseConfig(path=_string(database_data['path'], 'database.path'))

    providers_data = _section(raw_config, 'providers', {'kie'}, 'providers')
    kie_data = _section(
        providers_data, 'kie',
        {'base_url', 'upload_base_url', 'api_key_env', 'timeout_seconds'},
        'providers.kie'
    )
    kie = KieProviderConfig(
        base_url=_string(kie_data.get('base_url', DEFAULT_BASE_URL), 'providers.kie.base_url'),
        upload_base_url=_string(
            kie_data.get('upload_base_url', DEFAULT_UPLOAD_BASE_URL), 'providers.kie.upload_base_url'
        ),
        api_key_env=_string(kie_data.get('api_key_env', DEFAULT_API_KEY_ENV), 'providers.kie.api_key_env'),
        timeout_seconds=_positive_number(kie_data.get('timeout_seconds', 30), 'providers.kie.timeout_seconds'),
    )

    polling_data = _section(
        raw_config, 'polling', {'defaults', 'variants', 'request_ceiling_seconds'}, 'polling'
    )
    defaults = None
    if polling_data.get('defaults') is not None:
        defaults = _parse_polling_policy(polling_data['defaults'], 'polling.defaults')

    variants_data = polling_data.get('variants') or {}
    if not isinstance(variants_data, dict):
        raise ValueError("'polling.variants' must be a dictionary")
    variants = {}
    for key, policy_data in variants_data.items():
        if not isinstance(key, str) or key.count('/') != 1:
            raise ValueError(f"Polling variant key '{key}' must look like 'model/variant'")
        variants[key] = _parse_polling_policy(policy_data, f"polling.variants.{key}")

    ceiling = polling_data.get('request_ceiling_seconds')
    if ceiling is not None:
        ceiling = _positive_number(ceiling, 'polling.request_ceiling_seconds')

    polling = PollingSettings(defaults=defaults, variants=variants, request_ceiling_seconds=ceiling)

    pricing_data = _section(raw_config, 'pricing', {'cache_ttl_seconds'}, 'pricing')
    pricing = PricingConfig(
        cache_ttl_seconds=_positive_number(
            pricing_data.get('cache_ttl_seconds', 60), 'pricing.cache_ttl_seconds', allow_zero=True
        )
    )

    logging_data = _section(raw_config, 'logging', {'level', 'jsonl_path'}, 'logging')
    level = logging_data.get('level', 'INFO')
    if not isinstance(level, str) or level.upper() not in LOG_LEVELS:
        raise ValueError(f"'logging.level' must be one of: {list(LOG_LEVELS)}")
    jsonl_path = logging_data.get('jsonl_path')
    if jsonl_path is not None:
        jsonl_path = _string(jsonl_path, 'logging.jsonl_path')

    return OrchestratorConfig(
        database=database,
        kie=kie,
        polling=polling,
        pricing=pricing,
        logging=LoggingConfig(level=level.upper(), jsonl_path=jsonl_path),
    )


def load_cost_policy_file(path: str) -> CostPolicy:
    """Load and validate a cost policy from a YAML or JSON file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        yaml.YAMLError: If the file cannot be parsed
        ValueError: If the policy is invalid
    """
    raw_policy = _read_yaml(path, "Cost policy")
    if not raw_policy:
        raise ValueError("Cost policy file is empty")
    return parse_cost_policy(raw_policy)
