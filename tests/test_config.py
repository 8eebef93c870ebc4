"""
Unit tests for configuration loading and validation.

Tests strict validation and error handling for orchestrator configs.
"""

import os
import shutil
import tempfile
from decimal import Decimal
from unittest.mock import patch

import pytest
import yaml

from ai_gen_orchestrator.config.loader import (
    DEFAULT_API_KEY_ENV,
    KieProviderConfig,
    OrchestratorConfig,
    load_cost_policy_file,
    load_orchestrator_config,
)
from ai_gen_orchestrator.core.jobs import PollingPolicy
from ai_gen_orchestrator.core.pricing import CostOptions, resolve_video_cost
from ai_gen_orchestrator.providers.kie_base import DEFAULT_BASE_URL
from ai_gen_orchestrator.storage.db import DEFAULT_DB_PATH


class TestConfigLoading:
    """Test configuration loading and validation."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, config_data, filename: str = "config.yaml") -> str:
        config_path = os.path.join(self.temp_dir, filename)
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f)
        return config_path

    def test_minimal_config_uses_defaults(self):
        config = load_orchestrator_config(self._write_config({"database": {"path": "jobs.db"}}))

        assert config.database.path == "jobs.db"
        assert config.kie.base_url == DEFAULT_BASE_URL
        assert config.kie.api_key_env == DEFAULT_API_KEY_ENV
        assert config.polling.defaults is None
        assert config.polling.request_ceiling_seconds is None
        assert config.pricing.cache_ttl_seconds == 60
        assert config.logging.level == "INFO"

    def test_full_config(self):
        config_data = {
            "database": {"path": "/var/lib/gen/jobs.db"},
            "providers": {
                "kie": {
                    "base_url": "https://kie.internal",
                    "api_key_env": "MY_KIE_KEY",
                    "timeout_seconds": 12,
                }
            },
            "polling": {
                "defaults": {"interval_seconds": 5, "max_attempts": 40},
                "variants": {"veo/text-to-video": {"interval_seconds": 15, "max_attempts": 30}},
                "request_ceiling_seconds": 295,
            },
            "pricing": {"cache_ttl_seconds": 0},
            "logging": {"level": "debug", "jsonl_path": "events.jsonl"},
        }
        config = load_orchestrator_config(self._write_config(config_data))

        assert config.kie.base_url == "https://kie.internal"
        assert config.kie.timeout_seconds == 12.0
        assert config.polling.defaults == PollingPolicy(5, 40)
        assert config.polling.variants["veo/text-to-video"] == PollingPolicy(15, 30)
        assert config.polling.request_ceiling_seconds == 295
        assert config.pricing.cache_ttl_seconds == 0
        assert config.logging.level == "DEBUG"
        assert config.logging.jsonl_path == "events.jsonl"

    def test_missing_file(self):
        with pytest.raises(FileNotFoundError):
            load_orchestrator_config(os.path.join(self.temp_dir, "missing.yaml"))

    def test_invalid_yaml(self):
        config_path = os.path.join(self.temp_dir, "bad.yaml")
        with open(config_path, 'w', encoding='utf-8') as f:
            f.write("database: [unclosed")
        with pytest.raises(yaml.YAMLError):
            load_orchestrator_config(config_path)

    def test_empty_file(self):
        config_path = os.path.join(self.temp_dir, "empty.yaml")
        open(config_path, 'w').close()
        with pytest.raises(ValueError, match="empty"):
            load_orchestrator_config(config_path)

    def test_database_section_required(self):
        with pytest.raises(ValueError, match="database"):
            load_orchestrator_config(self._write_config({"pricing": {"cache_ttl_seconds": 5}}))

    def test_unknown_top_level_key(self):
        with pytest.raises(ValueError, match="Unknown configuration keys"):
            load_orchestrator_config(self._write_config({"database": {"path": "a.db"}, "budget": {}}))

    def test_unknown_nested_key(self):
        config_data = {"database": {"path": "a.db"}, "providers": {"kie": {"api_key": "secret"}}}
        with pytest.raises(ValueError, match="Unknown keys in providers.kie"):
            load_orchestrator_config(self._write_config(config_data))

    def test_polling_variant_key_format(self):
        config_data = {
            "database": {"path": "a.db"},
            "polling": {"variants": {"veo": {"interval_seconds": 1, "max_attempts": 2}}},
        }
        with pytest.raises(ValueError, match="model/variant"):
            load_orchestrator_config(self._write_config(config_data))

    def test_polling_max_attempts_positive(self):
        config_data = {
            "database": {"path": "a.db"},
            "polling": {"defaults": {"interval_seconds": 1, "max_attempts": 0}},
        }
        with pytest.raises(ValueError, match="max_attempts"):
            load_orchestrator_config(self._write_config(config_data))

    def test_invalid_log_level(self):
        config_data = {"database": {"path": "a.db"}, "logging": {"level": "LOUD"}}
        with pytest.raises(ValueError, match="logging.level"):
            load_orchestrator_config(self._write_config(config_data))

    def test_default_config(self):
        config = OrchestratorConfig.default()
        assert config.database.path == DEFAULT_DB_PATH


class TestApiKey:
    def test_reads_environment(self):
        with patch.dict(os.environ, {"MY_KIE_KEY": "  k-123 "}):
            assert KieProviderConfig(api_key_env="MY_KIE_KEY").resolve_api_key() == "k-123"

    def test_missing_key(self):
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(ValueError, match=DEFAULT_API_KEY_ENV):
                KieProviderConfig().resolve_api_key()


class TestCostPolicyFile:
    """Loading pricing from files."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write(self, content: str) -> str:
        path = os.path.join(self.temp_dir, "pricing.yaml")
        with open(path, 'w', encoding='utf-8') as f:
            f.write(content)
        return path

    def test_load_policy(self):
        path = self._write(
            "VIDEO:\n"
            "  DEFAULT: 60\n"
            "  MODELS:\n"
            "    wan-2-6:\n"
            "      default: 70\n"
            "      1080p:5: 99\n"
            "IMAGE:\n"
            "  DEFAULT: 5\n"
        )
        policy = load_cost_policy_file(path)
        options = CostOptions(resolution="1080p", duration="5")
        assert resolve_video_cost(policy, "wan-2-6", options) == Decimal("99")
        assert policy.prompt_enhancement == Decimal("1")

    def test_json_is_accepted(self):
        path = self._write('{"VIDEO": {"DEFAULT": 1}, "IMAGE": {"DEFAULT": 2}, "PROMPT_ENHANCEMENT": 0.5}')
        assert load_cost_policy_file(path).prompt_enhancement == Decimal("0.5")

    def test_empty_policy(self):
        with pytest.raises(ValueError, match="empty"):
            load_cost_policy_file(self._write(""))

    def test_negative_price(self):
        with pytest.raises(ValueError, match="VIDEO.DEFAULT"):
            load_cost_policy_file(self._write("VIDEO:\n  DEFAULT: -1\nIMAGE:\n  DEFAULT: 1\n"))
