#!/usr/bin/env python3
"""OneBot v11 适配器启动脚本.

读取 config.toml，按配置的模式启动适配器，把收到的事件打到日志里，Ctrl+C 退出。
"""

import asyncio
import sys

from onebot_adapter import ConfigError, OneBotAdapter, load_config, logger, setup_logger
from onebot_adapter.event_factory import describe_event
from onebot_adapter.events import Event


async def log_event_sink(event: Event, connection: object) -> None:
    logger.debug(f"事件 {event.event_name}: {describe_event(event)}")


async def main() -> int:
    config, needs_review = load_config()
    setup_logger(config.console_log_level, config.file_log_level)

    if needs_review:
        logger.info("--------------------------------------------------------------------")
        logger.info("重要提示: 适配器的配置文件已被创建或更新。")
        logger.info("请检查 config.toml 的内容，特别是新添加或已更改的配置项。")
        logger.info("完成检查和必要的修改后，请重新启动适配器。")
        logger.info("--------------------------------------------------------------------")
        return 0

    adapter = OneBotAdapter(config, event_sink=log_event_sink)
    await adapter.start()
    try:
        await asyncio.Future()  # 永远运行
    finally:
        await adapter.stop()
    return 0


if __name__ == "__main__":
    setup_logger()
    logger.info("OneBot v11 适配器正在通过 run_adapter.py 启动...")
    exit_code = 0
    try:
        exit_code = asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("程序被用户中断。")
    except ConfigError as e:
        logger.critical(f"配置错误，适配器无法启动: {e}")
        exit_code = 1
    except Exception:
        logger.exception("OneBot v11 适配器运行时发生严重错误:")
        exit_code = 1
    finally:
        logger.info("OneBot v11 适配器执行完毕。")
    sys.exit(exit_code)
