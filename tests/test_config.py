"""配置系统测试"""

import sys
from pathlib import Path

import pytest

# 添加项目根目录到Python路径
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from llm_gateway.config_models import DEFAULT_USER_ERROR_MESSAGE, GatewayConfig
from llm_gateway.exceptions import ConfigurationException, ErrorCode
from llm_gateway.utils.config import get_config_value, load_config, load_raw_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("GATEWAY_TEST_PORT", raising=False)


class TestConfigSystem:
    """测试配置系统"""

    def test_defaults(self):
        config = GatewayConfig()

        assert config.routing.refusal_max_length == 500
        assert config.routing.user_error_message == DEFAULT_USER_ERROR_MESSAGE
        assert config.routing.vision_max_output_tokens == 2048
        assert config.budget.week_start_day == 6
        assert config.usage.retention_days == 90
        assert config.cache.provider_ttl_seconds == 300

    def test_example_config_is_valid(self):
        """示例配置文件可以直接加载"""
        config = load_config(project_root / "config" / "example.yaml")

        assert config.server.port == 7601
        assert config.database.url == "sqlite+aiosqlite:///./data/llm_gateway.db"
        assert config.tasks.enabled is True

    def test_env_var_substitution(self, tmp_path, monkeypatch):
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            "server:\n  port: ${GATEWAY_TEST_PORT:9000}\nrouting:\n  refusal_max_length: 300\n",
            encoding="utf-8",
        )

        assert load_config(config_file).server.port == 9000

        monkeypatch.setenv("GATEWAY_TEST_PORT", "9100")
        config = load_config(config_file)
        assert config.server.port == 9100
        assert config.routing.refusal_max_length == 300

    def test_unresolved_placeholder_is_kept(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("routing:\n  user_error_message: ${GATEWAY_UNSET_MESSAGE}\n", encoding="utf-8")

        raw = load_raw_config(config_file)

        assert raw["routing"]["user_error_message"] == "${GATEWAY_UNSET_MESSAGE}"

    def test_database_url_env_overrides_file(self, tmp_path, monkeypatch):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("database:\n  url: sqlite+aiosqlite:///./a.db\n", encoding="utf-8")
        monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///./b.db")

        assert load_config(config_file).database.url == "sqlite+aiosqlite:///./b.db"

    def test_missing_file_uses_defaults(self, tmp_path):
        config = load_config(tmp_path / "missing.yaml")
        assert config == GatewayConfig()

    def test_invalid_yaml(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("server: [unclosed\n", encoding="utf-8")

        with pytest.raises(ConfigurationException) as exc_info:
            load_config(config_file)
        assert exc_info.value.error_code == ErrorCode.CONFIG_PARSE_ERROR

    def test_invalid_values(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("logging:\n  format: xml\nbudget:\n  week_start_day: 9\n", encoding="utf-8")

        with pytest.raises(ConfigurationException) as exc_info:
            load_config(config_file)
        assert exc_info.value.error_code == ErrorCode.CONFIG_INVALID
        assert exc_info.value.details["config_path"] == str(config_file)

    def test_top_level_must_be_mapping(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("- a\n- b\n", encoding="utf-8")

        with pytest.raises(ConfigurationException):
            load_raw_config(config_file)

    def test_get_config_value(self):
        raw = {"routing": {"refusal_max_length": 100}}

        assert get_config_value(raw, "routing.refusal_max_length") == 100
        assert get_config_value(raw, "routing.missing", "fallback") == "fallback"
