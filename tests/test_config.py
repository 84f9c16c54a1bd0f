"""config 模块测试。

测试 FGC_* 环境变量解析与全局配置实例。
"""

from __future__ import annotations

import os
from pathlib import Path
from unittest import mock

from foreground_child.config import (
    DEFAULT_SIGNAL_EXIT_DELAY,
    Config,
    get_config,
    load_config,
    reload_config,
)


class TestSignalExitDelay:
    """FGC_SIGNAL_EXIT_DELAY 解析测试。"""

    def test_default(self):
        env = {k: v for k, v in os.environ.items() if k != "FGC_SIGNAL_EXIT_DELAY"}
        with mock.patch.dict(os.environ, env, clear=True):
            config = load_config()
            assert config.signal_exit_delay == DEFAULT_SIGNAL_EXIT_DELAY == 0.2

    def test_custom_value(self):
        with mock.patch.dict(os.environ, {"FGC_SIGNAL_EXIT_DELAY": "0.5"}):
            assert load_config().signal_exit_delay == 0.5

    def test_clamped(self):
        with mock.patch.dict(os.environ, {"FGC_SIGNAL_EXIT_DELAY": "0"}):
            assert load_config().signal_exit_delay == 0.01

        with mock.patch.dict(os.environ, {"FGC_SIGNAL_EXIT_DELAY": "100"}):
            assert load_config().signal_exit_delay == 10.0

    def test_invalid_falls_back_to_default(self):
        with mock.patch.dict(os.environ, {"FGC_SIGNAL_EXIT_DELAY": "soon"}):
            assert load_config().signal_exit_delay == DEFAULT_SIGNAL_EXIT_DELAY


class TestLogDebug:
    """FGC_LOG_DEBUG 解析测试。"""

    def test_off_by_default(self):
        env = {k: v for k, v in os.environ.items() if k != "FGC_LOG_DEBUG"}
        with mock.patch.dict(os.environ, env, clear=True):
            config = load_config()
            assert config.log_debug is False
            assert config.log_file is None

    def test_truthy_values(self):
        for value in ("true", "1", "YES", "on"):
            with mock.patch.dict(os.environ, {"FGC_LOG_DEBUG": value}):
                config = load_config()
                assert config.log_debug is True
                assert config.log_file is not None
                assert Path(config.log_file).parent.is_dir()
                assert Path(config.log_file).name.startswith("fgc_debug_")

    def test_falsy_values(self):
        for value in ("false", "0", "no", "whatever"):
            with mock.patch.dict(os.environ, {"FGC_LOG_DEBUG": value}):
                assert load_config().log_debug is False


class TestGlobalConfig:
    """get_config / reload_config 测试。"""

    def test_get_config_is_cached(self):
        assert get_config() is get_config()

    def test_reload_config_picks_up_environment(self):
        with mock.patch.dict(os.environ, {"FGC_SIGNAL_EXIT_DELAY": "1.5"}):
            config = reload_config()
            assert config.signal_exit_delay == 1.5
            assert get_config() is config
        reload_config()

    def test_repr(self):
        config = Config(signal_exit_delay=0.3)
        assert "signal_exit_delay=0.3" in repr(config)
        assert "log_debug=False" in repr(config)
