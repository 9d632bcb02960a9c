"""메인 애플리케이션 - 모든 모듈 초기화 및 동시 실행"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from datetime import datetime, timezone
from pathlib import Path

from liqstream.collector import Collector
from liqstream.config import Config
from liqstream.engine import AggregationEngine
from liqstream.integrity_logger import IntegrityLogger
from liqstream.models import Exchange, LiquidationEvent
from liqstream.symbols import BybitSymbolFetcher
from liqstream.whales import WhaleTracker

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
WHALE_PRUNE_INTERVAL = 60

logger = logging.getLogger(__name__)


def setup_logging(config: Config) -> None:
    """콘솔 + 파일 로깅 설정 (log_dir 생성 후 FileHandler 추가)"""
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    Path(config.log_dir).mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(Path(config.log_dir) / "liqstream.log", encoding="utf-8")
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger().addHandler(file_handler)


async def resolve_bybit_symbols(config: Config) -> list[str]:
    """자동 조회 설정 시 REST로 심볼 목록 조회, 실패하면 설정값 사용"""
    if not config.bybit_symbols_auto or Exchange.BYBIT not in config.exchange_list():
        return list(config.bybit_symbols)
    symbols = await BybitSymbolFetcher().fetch_linear_usdt_symbols()
    if not symbols:
        logger.warning("[심볼] Bybit 자동 조회 실패, 설정된 심볼 사용")
        return list(config.bybit_symbols)
    return symbols


async def main(config_path: str = "config.yaml") -> None:
    """모든 모듈 초기화 및 종료 신호까지 실행"""
    config = Config.from_yaml(config_path)
    setup_logging(config)

    integrity_logger = IntegrityLogger(config.log_dir)
    engine = AggregationEngine(capacity=config.history_capacity)
    whales = WhaleTracker(
        threshold=config.whale_threshold,
        retention_minutes=config.whale_retention_minutes,
        capacity=config.whale_capacity,
    )
    engine.subscribe(whales)

    def on_liquidation(event: LiquidationEvent, unlocked: list[str]) -> None:
        alert = whales.latest_alert(datetime.now(timezone.utc))
        if alert is not None:
            logger.warning(
                f"[대형 청산] {alert.exchange.value} {alert.symbol} "
                f"{alert.value:,.0f} USDT"
            )

    engine.subscribe(on_liquidation)

    bybit_symbols = await resolve_bybit_symbols(config)
    collector = Collector(config, engine.apply, integrity_logger, bybit_symbols=bybit_symbols)

    logger.info("=== 청산 스트림 수집 시작 ===")
    logger.info(f"거래소: {[ex.value for ex in config.exchange_list()]}")
    logger.info(f"Bybit 심볼: {len(bybit_symbols)}개")

    async def periodic_stats():
        while True:
            await asyncio.sleep(config.stats_interval)
            state = engine.snapshot()
            logger.info(
                f"[통계] 총액={state.total_value:,.2f} 최고={state.high_score:,.2f} "
                f"BUY={state.buy_count} SELL={state.sell_count} "
                f"연속={state.daily_streak}일 상태={collector.states()}"
            )
            await integrity_logger.write_periodic_log()

    async def whale_cleanup():
        while True:
            await asyncio.sleep(WHALE_PRUNE_INTERVAL)
            removed = whales.prune(datetime.now(timezone.utc))
            if removed:
                logger.info(f"[고래] 만료 항목 {removed}건 제거")

    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def _signal_handler():
        logger.info("종료 신호 수신, 연결 정리 중...")
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _signal_handler)

    stream_tasks = collector.start()
    stats_task = asyncio.create_task(periodic_stats())
    cleanup_task = asyncio.create_task(whale_cleanup())
    streams_done = asyncio.gather(*stream_tasks, return_exceptions=True)
    shutdown_wait = asyncio.create_task(shutdown_event.wait())

    await asyncio.wait([shutdown_wait, streams_done], return_when=asyncio.FIRST_COMPLETED)

    shutdown_wait.cancel()
    stats_task.cancel()
    cleanup_task.cancel()
    await asyncio.gather(shutdown_wait, stats_task, cleanup_task, return_exceptions=True)
    await collector.close()
    logger.info("=== 시스템 종료 ===")


if __name__ == "__main__":
    config_file = sys.argv[1] if len(sys.argv) > 1 else "config.yaml"
    asyncio.run(main(config_file))
