"""데이터 모델 정의 - 거래소 청산 이벤트 및 집계 상태"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class Exchange(str, Enum):
    """청산 스트림을 제공하는 거래소"""
    BINANCE = "BINANCE"
    BYBIT = "BYBIT"
    OKX = "OKX"


class Side(str, Enum):
    """청산 주문(강제 주문)의 방향"""
    BUY = "BUY"
    SELL = "SELL"

    def opposite(self) -> Side:
        return Side.SELL if self is Side.BUY else Side.BUY


class SideBasis(str, Enum):
    """원시 side 토큰의 의미 - 주문 방향인지 포지션 방향인지"""
    ORDER = "order"
    POSITION = "position"


def ms_to_datetime(ms: int) -> datetime:
    """epoch ms → UTC datetime (밀리초 정밀도 유지)"""
    return EPOCH + timedelta(milliseconds=ms)


def datetime_to_ms(dt: datetime) -> int:
    return (dt - EPOCH) // timedelta(milliseconds=1)


# ── 디코더 출력 ──

@dataclass
class PartialLiquidation:
    """거래소별 디코더가 만든 정규화 이전 레코드"""
    symbol: str
    raw_side: str                # BUY / Sell / long / short ...
    order_type: str
    quantity: Decimal
    price: Decimal
    order_status: str
    timestamp_ms: int            # 거래소 기록 시각 (ms)
    side_basis: SideBasis | None = None   # None이면 정규화기 설정을 따름


# ── 정규화된 청산 이벤트 ──

@dataclass(frozen=True)
class LiquidationEvent:
    """정규화된 청산 이벤트 (생성 후 불변)

    value는 항상 quantity * price로 다시 계산되며 외부 값을 받지 않는다.
    """
    exchange: Exchange
    symbol: str
    side: Side
    order_type: str
    quantity: Decimal
    price: Decimal
    order_status: str
    timestamp: datetime
    value: Decimal = field(init=False)

    def __post_init__(self):
        if self.quantity < 0:
            raise ValueError(f"quantity must be non-negative: {self.quantity}")
        if self.price <= 0:
            raise ValueError(f"price must be positive: {self.price}")
        object.__setattr__(self, "value", self.quantity * self.price)

    @property
    def timestamp_ms(self) -> int:
        return datetime_to_ms(self.timestamp)

    def to_dict(self) -> dict:
        """표시 계층용 dict 변환 (숫자는 문자열로 유지)"""
        return {
            "exchange": self.exchange.value,
            "symbol": self.symbol,
            "side": self.side.value,
            "order_type": self.order_type,
            "quantity": str(self.quantity),
            "price": str(self.price),
            "order_status": self.order_status,
            "timestamp": self.timestamp.isoformat(),
            "value": str(self.value),
        }


# ── 업적 ──

@dataclass
class Achievement:
    """단방향(잠김 → 해제) 업적 플래그"""
    id: str
    title: str
    description: str
    unlocked: bool = False
    unlocked_at: datetime | None = None

    def unlock(self, when: datetime) -> bool:
        """해제 처리. 이미 해제된 경우 False (시각 유지)"""
        if self.unlocked:
            return False
        self.unlocked = True
        self.unlocked_at = when
        return True


FIRST_MILLION = "first_million"
WHALE_HUNTER = "whale_hunter"
BALANCED_VIEW = "balanced_view"


def default_achievements() -> dict[str, Achievement]:
    """기본 업적 카탈로그"""
    catalogue = [
        Achievement(FIRST_MILLION, "First Million",
                    "Witness 1M USDT in total liquidations"),
        Achievement(WHALE_HUNTER, "Whale Hunter",
                    "Spot a single liquidation worth over 100k USDT"),
        Achievement(BALANCED_VIEW, "Balanced View",
                    "See equal number of buy/sell liquidations (min 10 each)"),
    ]
    return {a.id: a for a in catalogue}


# ── 집계 상태 ──

@dataclass
class AggregateState:
    """프로세스 수명 동안 유지되는 집계 상태

    history는 도착 순서(오래된 것 → 최신)로 유지되며 용량 초과 시
    가장 먼저 도착한 이벤트부터 제거된다.
    """
    capacity: int = 100
    history: deque[LiquidationEvent] = field(default_factory=deque)
    total_value: Decimal = Decimal(0)
    high_score: Decimal = Decimal(0)
    buy_count: int = 0
    sell_count: int = 0
    largest_liquidation: LiquidationEvent | None = None
    daily_streak: int = 0
    last_active: datetime | None = None
    achievements: dict[str, Achievement] = field(default_factory=default_achievements)
    event_count: int = 0

    def __post_init__(self):
        if self.capacity < 1:
            raise ValueError(f"history capacity must be >= 1: {self.capacity}")
        self.history = deque(self.history, maxlen=self.capacity)

    def copy(self) -> AggregateState:
        """읽기용 독립 사본 (이벤트는 불변이므로 얕은 복사로 충분)"""
        return AggregateState(
            capacity=self.capacity,
            history=deque(self.history),
            total_value=self.total_value,
            high_score=self.high_score,
            buy_count=self.buy_count,
            sell_count=self.sell_count,
            largest_liquidation=self.largest_liquidation,
            daily_streak=self.daily_streak,
            last_active=self.last_active,
            achievements={
                k: Achievement(a.id, a.title, a.description, a.unlocked, a.unlocked_at)
                for k, a in self.achievements.items()
            },
            event_count=self.event_count,
        )

    def to_dict(self) -> dict:
        largest = self.largest_liquidation
        return {
            "total_value": str(self.total_value),
            "high_score": str(self.high_score),
            "buy_count": self.buy_count,
            "sell_count": self.sell_count,
            "event_count": self.event_count,
            "largest_liquidation": largest.to_dict() if largest else None,
            "daily_streak": self.daily_streak,
            "last_active": self.last_active.isoformat() if self.last_active else None,
            "achievements": {
                k: {
                    "title": a.title,
                    "unlocked": a.unlocked,
                    "unlocked_at": a.unlocked_at.isoformat() if a.unlocked_at else None,
                }
                for k, a in self.achievements.items()
            },
            "history_size": len(self.history),
        }
