"""고래 청산 추적 모듈 - 임계값 이상 청산을 보존 기간 동안 유지"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal

from liqstream.models import LiquidationEvent

logger = logging.getLogger(__name__)


class WhaleTracker:
    """고래 청산 보존 목록 (엔진 리스너로 연결)"""

    def __init__(self, threshold: Decimal | float = 250_000,
                 retention_minutes: int = 60, capacity: int = 100):
        self.threshold = Decimal(str(threshold))
        self.retention = timedelta(minutes=retention_minutes)
        self.capacity = capacity
        self._whales: dict[tuple, LiquidationEvent] = {}
        self._last_alert: datetime | None = None

    @staticmethod
    def _key(event: LiquidationEvent) -> tuple:
        return (event.timestamp, event.symbol, event.value)

    def __call__(self, event: LiquidationEvent, unlocked: list[str]) -> None:
        self.add(event)

    def add(self, event: LiquidationEvent) -> bool:
        """임계값 이상이고 중복이 아니면 추가"""
        if event.value < self.threshold:
            return False
        key = self._key(event)
        if key in self._whales:
            return False
        self._whales[key] = event
        logger.info(
            f"[고래] {event.exchange.value} {event.symbol} {event.side.value} "
            f"{event.value:.2f} USDT"
        )
        return True

    def prune(self, now: datetime) -> int:
        """보존 기간이 지난 항목 제거, 제거 건수 반환"""
        cutoff = now - self.retention
        expired = [k for k, e in self._whales.items() if e.timestamp <= cutoff]
        for k in expired:
            del self._whales[k]
        return len(expired)

    def whales(self, now: datetime | None = None) -> list[LiquidationEvent]:
        """최신순 정렬, capacity개까지 (now가 주어지면 만료 항목 먼저 제거)"""
        if now is not None:
            self.prune(now)
        ordered = sorted(self._whales.values(), key=lambda e: e.timestamp, reverse=True)
        return ordered[:self.capacity]

    def latest_alert(self, now: datetime, recent_seconds: float = 10,
                     cooldown_seconds: float = 5) -> LiquidationEvent | None:
        """알림 대상 고래 반환 (최근 발생 + 쿨다운 경과 시에만)"""
        ordered = self.whales(now)
        if not ordered:
            return None
        latest = ordered[0]
        if (now - latest.timestamp).total_seconds() >= recent_seconds:
            return None
        if self._last_alert and (now - self._last_alert).total_seconds() <= cooldown_seconds:
            return None
        self._last_alert = now
        return latest
