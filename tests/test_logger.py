"""日志系统测试"""

import json
import logging
import sys
from pathlib import Path

import pytest

# 添加项目根目录到 Python 路径
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from llm_gateway.config_models import LoggingConfig
from llm_gateway.utils.logger import get_logger, setup_logging


@pytest.fixture(autouse=True)
def restore_logging():
    yield
    setup_logging(LoggingConfig())


class TestSetupLogging:
    """全局日志设置"""

    def test_default_console_logging(self):
        setup_logging()

        root = logging.getLogger()
        assert root.level == logging.INFO
        assert len(root.handlers) == 1

    def test_level_from_config(self):
        setup_logging(LoggingConfig(level="debug"))
        assert logging.getLogger().level == logging.DEBUG

    def test_noisy_loggers_are_quieted(self):
        setup_logging(LoggingConfig(level="DEBUG"))
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_json_file_logging(self, tmp_path):
        """JSON格式写入轮换文件"""
        log_file = tmp_path / "logs" / "gateway.log"
        setup_logging(LoggingConfig(format="json", file=str(log_file)))

        logging.getLogger("llm_gateway.test").info("provider ready")
        for handler in logging.getLogger().handlers:
            handler.flush()

        line = log_file.read_text(encoding="utf-8").strip().splitlines()[-1]
        record = json.loads(line)
        assert record["name"] == "llm_gateway.test"
        assert record["levelname"] == "INFO"

    def test_get_logger(self):
        logger = get_logger("llm_gateway.test")
        assert logger is not None
        assert get_logger() is not None
