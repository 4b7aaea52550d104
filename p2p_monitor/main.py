# p2p_monitor/main.py
"""
Bybit P2P 监控

用法:
    python -m p2p_monitor.main run
    python -m p2p_monitor.main ingest --token USDT --currency USD
    python -m p2p_monitor.main summary --token USDT --currency USD
    python -m p2p_monitor.main aggregations --side 1 --bucket 1h --hours 24
    python -m p2p_monitor.main latest --limit 20
    python -m p2p_monitor.main cleanup --days 30
"""

import argparse
import asyncio
import json
import logging
import signal
from collections.abc import Sequence
from dataclasses import asdict, is_dataclass
from pathlib import Path
from typing import Any

from p2p_monitor.client.bybit import BybitP2PClient
from p2p_monitor.config import Config, load_config
from p2p_monitor.service import Envelope, P2PService
from p2p_monitor.storage.database import Database

logger = logging.getLogger(__name__)


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def parse_args(args: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Bybit P2P 挂单监控")
    parser.add_argument("--config", type=Path, default=Path("config.yaml"), help="配置文件路径")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("run", help="常驻运行：定时抓取与清理")

    ingest = sub.add_parser("ingest", help="抓取一次 SELL + BUY")
    ingest.add_argument("--token", type=str, default=None)
    ingest.add_argument("--currency", type=str, default=None)
    ingest.add_argument("--size", type=int, default=None)
    ingest.add_argument("--page", type=int, default=None)

    summary = sub.add_parser("summary", help="24h 市场概览")
    summary.add_argument("--token", type=str, default=None)
    summary.add_argument("--currency", type=str, default=None)

    aggs = sub.add_parser("aggregations", help="按时间桶聚合价格")
    aggs.add_argument("--token", type=str, default=None)
    aggs.add_argument("--currency", type=str, default=None)
    aggs.add_argument("--side", type=int, choices=[0, 1], required=True, help="0=SELL, 1=BUY")
    aggs.add_argument("--bucket", type=str, default=None, help="如 15m / 1h / 1d")
    aggs.add_argument("--hours", type=int, default=None)

    latest = sub.add_parser("latest", help="最新挂单")
    latest.add_argument("--limit", type=int, default=None)

    cleanup = sub.add_parser("cleanup", help="删除过期快照")
    cleanup.add_argument("--days", type=int, default=None)

    return parser.parse_args(args)


def to_jsonable(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    if isinstance(value, list):
        return [to_jsonable(v) for v in value]
    return value


class P2PMonitor:
    """进程入口，负责数据库与 HTTP 会话的生命周期"""

    def __init__(self, config: Config):
        self.config = config
        self.db = Database(config.database.path)
        self.client = BybitP2PClient(
            base_url=config.upstream.base_url,
            timeout_seconds=config.upstream.timeout_seconds,
            user_agent=config.upstream.user_agent,
        )
        self.service = P2PService(config, self.db, self.client)
        self.running = False

    async def __aenter__(self) -> "P2PMonitor":
        Path(self.config.database.path).parent.mkdir(parents=True, exist_ok=True)
        await self.db.init()
        await self.client.__aenter__()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.client.close()
        await self.db.close()

    async def _ingest_loop(self) -> None:
        """定时抓取所有交易对"""
        interval = self.config.ingestion.interval_minutes * 60
        while self.running:
            try:
                await self.service.monitor_pairs()
            except Exception as e:
                logger.error(f"Ingestion cycle failed: {e}", exc_info=True)
            await asyncio.sleep(interval)

    async def _cleanup_loop(self) -> None:
        """定时清理过期数据"""
        interval = self.config.database.cleanup_interval_hours * 3600
        while self.running:
            await asyncio.sleep(interval)
            try:
                await self.service.cleanup()
            except Exception as e:
                logger.error(f"Failed to cleanup old data: {e}")

    async def run(self) -> None:
        self.running = True
        tasks = [
            asyncio.create_task(self._ingest_loop()),
            asyncio.create_task(self._cleanup_loop()),
        ]
        logger.info(
            f"P2P Monitor started: pairs="
            f"{[f'{p.token_id}/{p.currency_id}' for p in self.config.ingestion.pairs]}"
        )

        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)

        await stop_event.wait()

        self.running = False
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("P2P Monitor stopped")

    async def execute(self, args: argparse.Namespace) -> Envelope:
        """执行一次性命令"""
        default_pair = self.config.ingestion.pairs[0]
        token = getattr(args, "token", None) or default_pair.token_id
        currency = getattr(args, "currency", None) or default_pair.currency_id
        service = self.service

        if args.command == "ingest":
            return await service.respond(
                service.trigger_ingest(token, currency, size=args.size, page=args.page),
                f"Fetched and stored buy and sell P2P data for {token}/{currency}",
            )
        if args.command == "summary":
            return await service.respond(service.get_summary(token, currency))
        if args.command == "aggregations":
            return await service.respond(
                service.get_aggregations(
                    token, currency, args.side, bucket=args.bucket, window_hours=args.hours
                )
            )
        if args.command == "latest":
            return await service.respond(service.get_latest_offers(args.limit))
        if args.command == "cleanup":
            return await service.respond(service.cleanup(args.days), "Old P2P data cleaned up")
        raise ValueError(f"Unknown command: {args.command}")


async def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    config = load_config(args.config) if args.config.exists() else Config()
    setup_logging(config.logging.level)

    async with P2PMonitor(config) as monitor:
        if args.command == "run":
            await monitor.run()
            return 0
        envelope = await monitor.execute(args)

    print(json.dumps(to_jsonable(envelope), indent=2, default=str))
    return 0 if envelope.success else 1


def cli() -> None:
    raise SystemExit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
