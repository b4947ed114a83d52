"""
Probe Demo - 主入口
启动探针演示服务，或以 --watch 模式对运行中的实例执行探针轮询
"""
import sys
import signal
import logging
import argparse
from pathlib import Path

import uvicorn

from .config import init_config
from .state import ProbeState
from .timers import TimerRegistry
from .machine import ProbeStateMachine
from .api import create_app
from .prober import ProbeRunner


def setup_logging(log_level: str = "INFO", log_file: str = None):
    """配置日志"""
    level = getattr(logging, log_level.upper(), logging.INFO)

    handlers = [logging.StreamHandler(sys.stdout)]

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


def build_machine(config) -> ProbeStateMachine:
    """按配置组装状态机（进程内唯一实例）"""
    return ProbeStateMachine(
        state=ProbeState(),
        recovery=config.recovery,
        timers=TimerRegistry(),
    )


def run_watch(url: str, config, logger):
    """--watch 模式：模拟 kubelet 轮询目标实例"""
    runner = ProbeRunner(url, config.probes)

    def signal_handler(signum, frame):
        logger.info("收到退出信号，正在关闭...")
        runner.stop()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    runner.start()
    logger.info("探针轮询中，按 Ctrl+C 退出")
    while True:
        runner.stop_event.wait(1)


def main():
    """主入口函数"""
    parser = argparse.ArgumentParser(description='Probe Demo - Kubernetes 探针演示服务')
    parser.add_argument('--config-dir', type=str, help='配置文件目录')
    parser.add_argument('--host', type=str, default=None, help='API 服务监听地址')
    parser.add_argument('--port', type=int, default=None, help='API 服务监听端口')
    parser.add_argument('--log-level', type=str, default=None, help='日志级别')
    parser.add_argument('--watch', type=str, metavar='URL', help='对运行中的实例执行探针轮询，不启动服务')

    args = parser.parse_args()

    config = init_config(args.config_dir)
    log_level = args.log_level or config.system.log_level

    setup_logging(
        log_level=log_level,
        log_file=config.system.log_file or None
    )

    logger = logging.getLogger(__name__)

    if args.watch:
        run_watch(args.watch, config, logger)
        return

    host = args.host or config.server.host
    port = args.port or config.server.port

    logger.info("=" * 50)
    logger.info("Probe Demo 启动中...")
    logger.info("=" * 50)
    logger.info(f"Pod: {config.pod.pod_name} ({config.pod.pod_ip}) @ {config.pod.node_name}")
    logger.info(
        f"readiness 恢复延迟: {config.recovery.readiness_restore_seconds}s, "
        f"liveness 恢复区间: [{config.recovery.liveness_restore_min_seconds}, "
        f"{config.recovery.liveness_restore_max_seconds}]s"
    )

    machine = build_machine(config)
    app = create_app(machine, config.pod)
    logger.info(f"API 服务启动: http://{host}:{port}")

    try:
        uvicorn.run(
            app,
            host=host,
            port=port,
            log_level=log_level.lower()
        )
    finally:
        # uvicorn 自行处理 SIGINT/SIGTERM，退出后在这里清理定时器
        machine.shutdown()


if __name__ == "__main__":
    main()
