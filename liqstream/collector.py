"""WebSocket 청산 스트림 수집 모듈 - 거래소별 연결, 구독, 하트비트, 재연결"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable

import websockets

from liqstream.config import ReconnectPolicy
from liqstream.decoders import BYBIT_TOPIC, OKX_CHANNEL, decode, is_control_frame
from liqstream.models import Exchange, LiquidationEvent
from liqstream.normalizer import Normalizer

if TYPE_CHECKING:
    from liqstream.config import Config
    from liqstream.integrity_logger import IntegrityLogger

logger = logging.getLogger(__name__)

ENDPOINTS: dict[Exchange, str] = {
    Exchange.BINANCE: "wss://fstream.binance.com/ws/!forceOrder@arr",
    Exchange.BYBIT: "wss://stream.bybit.com/v5/public/linear",
    Exchange.OKX: "wss://ws.okx.com:8443/ws/v5/public",
}

BYBIT_TOPICS_PER_REQUEST = 10
TRANSPORT_PING_INTERVAL = 20

EventSink = Callable[[LiquidationEvent], None]


class ConnectionState(str, Enum):
    CONNECTING = "CONNECTING"
    OPEN = "OPEN"
    SUBSCRIBING = "SUBSCRIBING"
    STREAMING = "STREAMING"
    CLOSED = "CLOSED"


@dataclass
class Heartbeat:
    """애플리케이션 레벨 ping (간격 초, 전송 문자열)"""
    interval: float
    payload: str


def build_subscribe_messages(exchange: Exchange, bybit_symbols: list[str] | None = None,
                             okx_inst_type: str = "SWAP") -> list[str]:
    """연결 직후 전송할 구독 메시지 (Binance는 URL로 구독하므로 없음)"""
    if exchange is Exchange.BYBIT:
        topics = [f"{BYBIT_TOPIC}.{s.upper()}" for s in (bybit_symbols or [])]
        return [
            json.dumps({"op": "subscribe", "args": topics[i:i + BYBIT_TOPICS_PER_REQUEST]})
            for i in range(0, len(topics), BYBIT_TOPICS_PER_REQUEST)
        ]
    if exchange is Exchange.OKX:
        return [json.dumps({
            "op": "subscribe",
            "args": [{"channel": OKX_CHANNEL, "instType": okx_inst_type}],
        })]
    return []


def build_heartbeat(exchange: Exchange, config: Config) -> Heartbeat | None:
    if exchange is Exchange.OKX:
        return Heartbeat(config.okx_ping_interval, "ping")
    if exchange is Exchange.BYBIT:
        return Heartbeat(config.bybit_ping_interval, json.dumps({"op": "ping"}))
    return None


class ExchangeStream:
    """단일 거래소 청산 스트림

    상태: CONNECTING → OPEN → (SUBSCRIBING) → STREAMING → CLOSED.
    연결 종료 후 재연결 여부는 ReconnectPolicy가 결정한다.
    """

    def __init__(self, exchange: Exchange, url: str, on_event: EventSink,
                 normalizer: Normalizer | None = None,
                 subscribe_messages: list[str] | None = None,
                 heartbeat: Heartbeat | None = None,
                 policy: ReconnectPolicy | None = None,
                 open_timeout: float | None = 10.0,
                 integrity_logger: IntegrityLogger | None = None):
        self.exchange = exchange
        self.url = url
        self.on_event = on_event
        self.normalizer = normalizer or Normalizer()
        self.subscribe_messages = list(subscribe_messages or [])
        self.heartbeat = heartbeat
        self.policy = policy or ReconnectPolicy()
        self.open_timeout = open_timeout
        self.integrity_logger = integrity_logger
        self.state = ConnectionState.CLOSED
        self.attempt = 0
        self._ws = None
        self._heartbeat_task: asyncio.Task | None = None
        self._closing = False
        self._close_requested = asyncio.Event()

    @property
    def name(self) -> str:
        return self.exchange.value

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self.state:
            logger.debug(f"[상태-{self.name}] {self.state.value} → {state.value}")
            self.state = state

    async def run(self) -> None:
        """연결 루프 - 종료 또는 정책상 재연결 불가 시까지"""
        while not self._closing:
            try:
                await self._connect_and_stream()
                reason = "연결 종료"
                logger.info(f"[종료-{self.name}] WebSocket 연결 종료")
            except Exception as e:
                reason = str(e) or type(e).__name__
                logger.error(f"[에러-{self.name}] {reason}")
                if self.integrity_logger:
                    self.integrity_logger.record_error(self.name, time.time(), reason)
            finally:
                await self._stop_heartbeat()
                self._ws = None
                self._set_state(ConnectionState.CLOSED)

            if self._closing:
                break
            if not self.policy.allows(self.attempt):
                logger.warning(f"[중지-{self.name}] 재연결 정책에 따라 스트림 중지")
                break
            delay = self.policy.compute_delay(self.attempt)
            self.attempt += 1
            if self.integrity_logger:
                self.integrity_logger.record_reconnect(self.name, time.time(), reason)
            logger.info(f"[재연결-{self.name}] {delay}초 후 재연결 (시도 {self.attempt})")
            await self._wait_before_retry(delay)

    async def _wait_before_retry(self, delay: float) -> None:
        """백오프 대기, close() 호출 시 즉시 반환"""
        try:
            await asyncio.wait_for(self._close_requested.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def _connect_and_stream(self) -> None:
        """WebSocket 연결, 구독, 메시지 수신"""
        self._set_state(ConnectionState.CONNECTING)
        async with websockets.connect(self.url, ping_interval=TRANSPORT_PING_INTERVAL,
                                      open_timeout=self.open_timeout) as ws:
            if self._closing:
                # 연결 수립 중 close() 호출됨
                logger.info(f"[종료-{self.name}] 연결 수립 중 종료 요청, 구독 생략")
                return
            self._ws = ws
            self._set_state(ConnectionState.OPEN)
            self.attempt = 0
            logger.info(f"[연결] {self.name} WebSocket 연결 성공")

            if self.subscribe_messages:
                self._set_state(ConnectionState.SUBSCRIBING)
                for msg in self.subscribe_messages:
                    await ws.send(msg)
                logger.info(f"[구독] {self.name} 구독 요청 {len(self.subscribe_messages)}건 전송")

            self._set_state(ConnectionState.STREAMING)
            self._start_heartbeat(ws)
            async for raw_msg in ws:
                self.handle_message(raw_msg)

    def handle_message(self, raw_msg: str | bytes) -> list[LiquidationEvent]:
        """수신 메시지 1건 처리. 어떤 예외도 연결 계층으로 전파하지 않음"""
        il = self.integrity_logger
        if il:
            il.record_message(self.name)
        try:
            text = raw_msg.decode("utf-8") if isinstance(raw_msg, bytes) else raw_msg
            if text.strip() == "pong":
                if il:
                    il.record_control(self.name)
                return []
            message = json.loads(text)
            records = decode(self.exchange, message)
            if not records:
                if is_control_frame(self.exchange, message):
                    logger.debug(f"[제어-{self.name}] {text[:200]}")
                    if il:
                        il.record_control(self.name)
                elif il:
                    il.record_discard(self.name)
                return []
            events = [self.normalizer.normalize(self.exchange, r) for r in records]
        except Exception as e:
            logger.warning(f"[디코드-{self.name}] 메시지 폐기: {e}")
            if il:
                il.record_discard(self.name)
            return []

        if il:
            il.record_events(self.name, len(events))
        for event in events:
            try:
                self.on_event(event)
            except Exception:
                logger.exception(f"[처리-{self.name}] 이벤트 전달 중 예외 발생")
        return events

    def _start_heartbeat(self, ws) -> None:
        if self.heartbeat is None:
            return
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(ws))

    async def _heartbeat_loop(self, ws) -> None:
        """고정 간격 ping 전송 (pong 미수신은 검사하지 않음)"""
        while True:
            await asyncio.sleep(self.heartbeat.interval)
            try:
                await ws.send(self.heartbeat.payload)
            except Exception as e:
                logger.warning(f"[하트비트-{self.name}] ping 전송 실패: {e}")
                return

    async def _stop_heartbeat(self) -> None:
        task, self._heartbeat_task = self._heartbeat_task, None
        if task is None:
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    async def close(self) -> None:
        """재연결 중단, 하트비트 취소, 소켓 종료"""
        self._closing = True
        self._close_requested.set()
        await self._stop_heartbeat()
        ws = self._ws
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                logger.warning(f"[종료-{self.name}] 소켓 종료 실패: {e}")
        self._set_state(ConnectionState.CLOSED)


class Collector:
    """거래소별 청산 스트림 관리자 - 거래소마다 독립 태스크로 동시 실행"""

    def __init__(self, config: Config, on_event: EventSink,
                 integrity_logger: IntegrityLogger | None = None,
                 bybit_symbols: list[str] | None = None):
        self.config = config
        self.on_event = on_event
        self.integrity_logger = integrity_logger
        self.bybit_symbols = bybit_symbols if bybit_symbols is not None else config.bybit_symbols
        self.normalizer = Normalizer(config.side_bases())
        self.streams: dict[Exchange, ExchangeStream] = {
            ex: self.build_stream(ex) for ex in config.exchange_list()
        }
        self._tasks: list[asyncio.Task] = []

    @staticmethod
    def build_ws_url(exchange: Exchange) -> str:
        return ENDPOINTS[exchange]

    def build_stream(self, exchange: Exchange) -> ExchangeStream:
        if exchange is Exchange.BYBIT and not self.bybit_symbols:
            logger.warning("[구독] Bybit 심볼 목록이 비어 있음 - 수신 이벤트 없음")
        return ExchangeStream(
            exchange=exchange,
            url=self.build_ws_url(exchange),
            on_event=self.on_event,
            normalizer=self.normalizer,
            subscribe_messages=build_subscribe_messages(
                exchange, self.bybit_symbols, self.config.okx_inst_type
            ),
            heartbeat=build_heartbeat(exchange, self.config),
            policy=self.config.reconnect_policy(),
            open_timeout=self.config.open_timeout,
            integrity_logger=self.integrity_logger,
        )

    def start(self) -> list[asyncio.Task]:
        """스트림 태스크 생성 (실행 중인 이벤트 루프 필요)"""
        if not self._tasks:
            self._tasks = [
                asyncio.create_task(stream.run(), name=f"stream-{ex.value}")
                for ex, stream in self.streams.items()
            ]
        return self._tasks

    async def run(self) -> None:
        """모든 스트림이 끝날 때까지 대기"""
        tasks = self.start()
        await asyncio.gather(*tasks, return_exceptions=True)

    def states(self) -> dict[str, ConnectionState]:
        return {ex.value: stream.state for ex, stream in self.streams.items()}

    async def close(self) -> None:
        """모든 연결과 하트비트 종료, 남은 태스크 취소"""
        for stream in self.streams.values():
            await stream.close()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("[종료] 모든 거래소 연결 종료")
