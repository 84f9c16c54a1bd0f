"""FGC 环境变量配置管理。

环境变量：
    FGC_SIGNAL_EXIT_DELAY: 父进程以子进程的终止信号自杀后，事件循环保持存活的秒数
        - 默认 0.2
        - 限制在 0.01-10 秒范围

    FGC_LOG_DEBUG: 调试日志
        - true/1/yes/on = 开启（写入带时间戳的临时文件）
        - false/0/no = 关闭（默认，INFO 输出到 stderr）
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

__all__ = ["Config", "get_config", "load_config", "reload_config"]

DEFAULT_SIGNAL_EXIT_DELAY = 0.2
MIN_SIGNAL_EXIT_DELAY = 0.01
MAX_SIGNAL_EXIT_DELAY = 10.0


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """解析布尔值环境变量。"""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_signal_exit_delay(value: str | None) -> float:
    """解析信号退出延迟环境变量。"""
    if not value:
        return DEFAULT_SIGNAL_EXIT_DELAY
    try:
        delay = float(value)
    except ValueError:
        return DEFAULT_SIGNAL_EXIT_DELAY
    # 限制在 0.01-10 秒范围
    return max(MIN_SIGNAL_EXIT_DELAY, min(delay, MAX_SIGNAL_EXIT_DELAY))


def _generate_log_file_path() -> str:
    """生成日志文件路径。

    Returns:
        系统临时目录下带时间戳的日志文件绝对路径
    """
    # 使用系统临时目录下的 foreground-child 子目录
    log_dir = Path(tempfile.gettempdir()) / "foreground-child"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"fgc_debug_{timestamp}_{os.getpid()}.log"
    return str(log_file.resolve())


@dataclass
class Config:
    """FGC 配置。

    Attributes:
        signal_exit_delay: 信号自杀后的安全延迟（秒）
        log_debug: 是否输出调试日志到临时文件
        log_file: 日志文件路径（log_debug 开启时设置）
    """

    signal_exit_delay: float = DEFAULT_SIGNAL_EXIT_DELAY
    log_debug: bool = False
    log_file: str | None = None

    def __repr__(self) -> str:
        return (
            f"Config(signal_exit_delay={self.signal_exit_delay}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file})"
        )


def load_config() -> Config:
    """从环境变量加载配置。"""
    log_debug = _parse_bool(os.environ.get("FGC_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    return Config(
        signal_exit_delay=_parse_signal_exit_delay(
            os.environ.get("FGC_SIGNAL_EXIT_DELAY")
        ),
        log_debug=log_debug,
        log_file=log_file,
    )


# 全局配置实例（延迟加载）
_config: Config | None = None


def get_config() -> Config:
    """获取全局配置实例。"""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """重新加载配置（用于测试）。"""
    global _config
    _config = load_config()
    return _config
