# -*- coding: utf-8 -*-
"""
===================================
Messenger 命令機器人 - 主程序
===================================

職責：
1. 初始化日誌系統
2. 啟動 Webhook 服務（含定時問候）
3. 提供運維命令行入口（列出命令、手動推送問候）

使用方式：
    python main.py                          # 啟動服務
    python main.py --debug                  # 調試模式
    python main.py --no-moments             # 不啟動定時問候
    python main.py --moments-only           # 僅運行定時問候調度
    python main.py --send-moments morning   # 立即推送一批問候後退出
    python main.py --list-commands          # 列出已加載的命令
"""

import argparse
import logging
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path

from config import get_config

# 配置日誌格式
LOG_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)-20s | %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def setup_logging(debug: bool = False, log_dir: str = "./logs", log_level: str = "INFO") -> None:
    """
    配置日誌系統（同時輸出到控制檯和文件）

    Args:
        debug: 是否啟用調試模式
        log_dir: 日誌文件目錄
        log_level: 非調試模式下的控制檯日誌級別
    """
    level = logging.DEBUG if debug else getattr(logging, (log_level or "INFO").upper(), logging.INFO)

    # 創建日誌目錄
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    # 日誌文件路徑（按日期分文件）
    today_str = datetime.now().strftime('%Y%m%d')
    log_file = log_path / f"messenger_bot_{today_str}.log"
    debug_log_file = log_path / f"messenger_bot_debug_{today_str}.log"

    # 創建根 logger
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # 根 logger 設為 DEBUG，由 handler 控制輸出級別

    # Handler 1: 控制檯輸出
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT))
    root_logger.addHandler(console_handler)

    # Handler 2: 常規日誌文件（INFO 級別，10MB 輪轉）
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=5,
        encoding='utf-8'
    )
    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT))
    root_logger.addHandler(file_handler)

    # Handler 3: 調試日誌文件（DEBUG 級別，包含所有詳細信息）
    debug_handler = RotatingFileHandler(
        debug_log_file,
        maxBytes=50 * 1024 * 1024,  # 50MB
        backupCount=3,
        encoding='utf-8'
    )
    debug_handler.setLevel(logging.DEBUG)
    debug_handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT))
    root_logger.addHandler(debug_handler)

    # 降低第三方庫的日誌級別
    logging.getLogger('urllib3').setLevel(logging.WARNING)
    logging.getLogger('sqlalchemy').setLevel(logging.WARNING)
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('schedule').setLevel(logging.WARNING)

    logging.info(f"日誌系統初始化完成，日誌目錄: {log_path.absolute()}")
    logging.info(f"常規日誌: {log_file}")
    logging.info(f"調試日誌: {debug_log_file}")


logger = logging.getLogger(__name__)


def parse_arguments() -> argparse.Namespace:
    """解析命令行參數"""
    parser = argparse.ArgumentParser(
        description='Messenger 命令機器人',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
示例:
  python main.py                          # 啟動 Webhook 服務
  python main.py --debug                  # 調試模式
  python main.py --port 8080              # 指定端口
  python main.py --no-moments             # 不啟動定時問候
  python main.py --moments-only           # 僅運行定時問候調度
  python main.py --send-moments random    # 立即推送一批隨機問候後退出
  python main.py --list-commands          # 列出已加載的命令
        '''
    )

    parser.add_argument(
        '--debug',
        action='store_true',
        help='啟用調試模式，輸出詳細日誌'
    )

    parser.add_argument(
        '--host',
        type=str,
        default=None,
        help='監聽地址（默認使用配置值）'
    )

    parser.add_argument(
        '--port',
        type=int,
        default=None,
        help='監聽端口（默認使用配置值）'
    )

    parser.add_argument(
        '--no-moments',
        action='store_true',
        help='不啟動定時問候推送'
    )

    parser.add_argument(
        '--moments-only',
        action='store_true',
        help='僅運行定時問候調度（不啟動 Webhook 服務）'
    )

    parser.add_argument(
        '--send-moments',
        choices=['morning', 'night', 'random'],
        default=None,
        help='立即推送一批問候後退出'
    )

    parser.add_argument(
        '--list-commands',
        action='store_true',
        help='加載並列出全部命令後退出'
    )

    return parser.parse_args()


def list_commands(config) -> int:
    """加載命令並打印列表"""
    from bot.runtime import create_runtime
    from storage import MemoryUserStore

    runtime = create_runtime(config, users=MemoryUserStore())
    runtime.registry.load()
    prefix = config.bot_command_prefix
    for command in runtime.registry.list_commands(include_hidden=True):
        flags = " (admin)" if command.admin_only else ""
        aliases = f" [{', '.join(command.aliases)}]" if command.aliases else ""
        print(f"[{command.category}] {command.name}{flags}{aliases} - {command.description}")
        print(f"    {command.format_usage(prefix)}")
    return 0


def send_moments(config, label: str) -> int:
    """立即推送一批問候"""
    from bot.runtime import create_runtime

    runtime = create_runtime(config)
    try:
        report = runtime.create_moment_sender().run(label)
    finally:
        runtime.close()

    logger.info(f"問候推送結果: 成功 {report.sent}, 失敗 {report.failed}, 跳過 {report.skipped}")
    return 0 if report.failed == 0 else 1


def run_moments_only(config) -> int:
    """前臺運行定時問候調度器，直到收到退出信號"""
    from bot.runtime import create_runtime
    from scheduler import create_moment_scheduler

    runtime = create_runtime(config)
    try:
        create_moment_scheduler(runtime).run()
    finally:
        runtime.close()
    return 0


def run_server(config, host: str, port: int, enable_moments: bool) -> int:
    """啟動 Webhook 服務（阻塞）"""
    import uvicorn
    from server import create_app

    app = create_app(enable_moments=enable_moments)
    logger.info(f"Webhook 服務啟動: http://{host}:{port}/webhook")
    uvicorn.run(app, host=host, port=port, log_config=None)
    return 0


def main() -> int:
    """
    主入口函數

    Returns:
        退出碼（0 表示成功）
    """
    # 解析命令行參數
    args = parse_arguments()

    # 加載配置（在設置日誌前加載，以獲取日誌目錄）
    config = get_config()

    # 配置日誌（輸出到控制檯和文件）
    setup_logging(debug=args.debug or config.debug, log_dir=config.log_dir, log_level=config.log_level)

    logger.info("=" * 60)
    logger.info("Messenger 命令機器人 啟動")
    logger.info(f"運行時間: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    logger.info("=" * 60)

    # 驗證配置
    warnings = config.validate()
    for warning in warnings:
        logger.warning(warning)

    try:
        # 模式1: 列出命令
        if args.list_commands:
            return list_commands(config)

        # 模式2: 手動推送一批問候
        if args.send_moments:
            logger.info(f"模式: 手動推送 {args.send_moments} 問候")
            return send_moments(config, args.send_moments)

        # 模式3: 僅定時問候
        if args.moments_only:
            logger.info("模式: 僅定時問候")
            return run_moments_only(config)

        # 模式4: Webhook 服務
        host = args.host or config.host
        port = args.port or config.port
        enable_moments = config.moments_enabled and not args.no_moments
        return run_server(config, host, port, enable_moments)

    except KeyboardInterrupt:
        logger.info("\n用戶中斷，程序退出")
        return 130

    except Exception as e:
        logger.exception(f"程序執行失敗: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
