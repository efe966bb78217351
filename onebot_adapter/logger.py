# onebot_adapter/logger.py
import os
import sys
from pathlib import Path

from loguru import logger as loguru_logger

# --- 日志配置 ---

# 环境变量优先于参数，方便临时调高日志级别排查问题
CONSOLE_LOG_LEVEL_ENV = "ONEBOT_ADAPTER_CONSOLE_LOG_LEVEL"
FILE_LOG_LEVEL_ENV = "ONEBOT_ADAPTER_FILE_LOG_LEVEL"

# 默认放在项目根目录的 logs/adapter/ 下
DEFAULT_LOG_DIR = Path(__file__).resolve().parent.parent / "logs" / "adapter"

LOG_FILE_FORMAT = "{time:YYYY-MM-DD}.log"
LOG_ROTATION = "00:00"
LOG_RETENTION = "7 days"
LOG_COMPRESSION = "zip"

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}"


def setup_logger(
    console_level: str = "INFO",
    file_level: str | None = "DEBUG",
    log_dir: Path | str | None = None,
) -> None:
    """配置 loguru 的输出.

    作为库使用时不会自动调用，由启动脚本或者宿主程序决定要不要用。
    file_level 为 None 时不写日志文件。
    """
    console_level = os.getenv(CONSOLE_LOG_LEVEL_ENV, console_level).upper()
    env_file_level = os.getenv(FILE_LOG_LEVEL_ENV)
    if env_file_level:
        file_level = env_file_level
    file_level = file_level.upper() if file_level else None

    # 移除 loguru 默认的处理器，以便完全自定义
    loguru_logger.remove()

    loguru_logger.add(
        sys.stderr,
        level=console_level,
        format=CONSOLE_FORMAT,
        colorize=True,
        enqueue=True,
    )

    if file_level is None:
        return

    directory = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
    directory.mkdir(parents=True, exist_ok=True)
    loguru_logger.add(
        directory / LOG_FILE_FORMAT,
        level=file_level,
        format=FILE_FORMAT,
        rotation=LOG_ROTATION,
        retention=LOG_RETENTION,
        compression=LOG_COMPRESSION,
        encoding="utf-8",
        enqueue=True,
    )


# 导出一个可以直接使用的 logger 实例
logger = loguru_logger
