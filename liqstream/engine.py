"""집계 엔진 모듈 - 누적 합계, 카운터, 연속 활동일, 업적, 최근 이력 유지"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable

from liqstream.models import (
    BALANCED_VIEW, FIRST_MILLION, WHALE_HUNTER,
    AggregateState, LiquidationEvent, Side,
)

logger = logging.getLogger(__name__)

FIRST_MILLION_TOTAL = Decimal(1_000_000)
WHALE_HUNTER_VALUE = Decimal(100_000)
BALANCED_VIEW_MIN = 10

ONE_DAY = timedelta(days=1)

Listener = Callable[[LiquidationEvent, "list[str]"], None]
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def update_streak(state: AggregateState, now: datetime) -> None:
    """경과 일수(소수) 기준 연속 활동일 갱신

    [1, 2)일 → +1, 2일 이상 → 1로 리셋, 1일 미만 → 유지.
    """
    if state.last_active is None:
        state.daily_streak = 1
    else:
        days = (now - state.last_active) / ONE_DAY
        if 1 <= days < 2:
            state.daily_streak += 1
        elif days >= 2:
            state.daily_streak = 1
    state.last_active = now


def _balanced(buy: int, sell: int) -> bool:
    return buy == sell and buy >= BALANCED_VIEW_MIN


def apply_event(state: AggregateState, event: LiquidationEvent,
                now: datetime) -> list[str]:
    """이벤트 1건을 상태에 원자적으로 반영, 새로 해제된 업적 id 반환"""
    # balanced_view는 증가 전/후 카운터 중 하나라도 균형이면 해제
    prev_buy, prev_sell = state.buy_count, state.sell_count

    state.history.append(event)   # deque(maxlen) → 가장 먼저 도착한 이벤트 제거
    state.total_value += event.value
    if state.total_value > state.high_score:
        state.high_score = state.total_value

    if event.side is Side.BUY:
        state.buy_count += 1
    else:
        state.sell_count += 1
    state.event_count += 1

    largest = state.largest_liquidation
    if largest is None or event.value > largest.value:
        state.largest_liquidation = event

    update_streak(state, now)

    checks = {
        FIRST_MILLION: state.total_value >= FIRST_MILLION_TOTAL,
        WHALE_HUNTER: event.value >= WHALE_HUNTER_VALUE,
        BALANCED_VIEW: (_balanced(prev_buy, prev_sell)
                        or _balanced(state.buy_count, state.sell_count)),
    }
    unlocked = []
    for achievement_id, reached in checks.items():
        achievement = state.achievements.get(achievement_id)
        if achievement is None or achievement.unlocked or not reached:
            continue
        achievement.unlock(now)
        unlocked.append(achievement_id)
    return unlocked


def _matches_term(event: LiquidationEvent, term: str) -> bool:
    return (term in event.symbol.lower()
            or term in str(event.price)
            or term in str(event.value))


class AggregationEngine:
    """단일 작성자 집계 엔진

    모든 갱신은 apply()를 통해 한 건씩 도착 순서대로 처리된다.
    읽기는 snapshot()/history()/search(), 이벤트 통지는 subscribe()로 제공.
    """

    def __init__(self, capacity: int = 100, clock: Clock | None = None):
        self._state = AggregateState(capacity=capacity)
        self._clock = clock or utc_now
        self._listeners: list[Listener] = []

    @property
    def capacity(self) -> int:
        return self._state.capacity

    def apply(self, event: LiquidationEvent) -> list[str]:
        unlocked = apply_event(self._state, event, self._clock())
        for achievement_id in unlocked:
            logger.info(f"[업적] {achievement_id} 해제 ({event.exchange.value} {event.symbol})")
        self._notify(event, unlocked)
        return unlocked

    def _notify(self, event: LiquidationEvent, unlocked: list[str]) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, list(unlocked))
            except Exception:
                logger.exception("[리스너] 이벤트 통지 중 예외 발생")

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """이벤트 통지 리스너 등록, 해제 함수 반환"""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def snapshot(self) -> AggregateState:
        return self._state.copy()

    def history(self) -> list[LiquidationEvent]:
        """최근 이력 (도착 순서)"""
        return list(self._state.history)

    def search(self, symbol: str | None = None, min_value: Decimal | float | None = None,
               coins: list[str] | None = None) -> list[LiquidationEvent]:
        """목록 표시용 이력 필터 (최신순)

        symbol: 검색어. 심볼(대소문자 무시), 가격, 금액 문자열 중 하나에 포함되면 일치
        min_value: 최소 청산 금액,
        coins: 심볼 접두 코인 목록 (예: ["BTC", "ETH"])
        """
        term = symbol.lower() if symbol else None
        threshold = Decimal(str(min_value)) if min_value is not None else None
        prefixes = [c.upper() for c in coins] if coins else None
        result = []
        for event in reversed(self._state.history):
            if term and not _matches_term(event, term):
                continue
            if threshold is not None and event.value < threshold:
                continue
            if prefixes and not any(event.symbol.upper().startswith(p) for p in prefixes):
                continue
            result.append(event)
        return result
