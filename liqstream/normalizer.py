"""이벤트 정규화 모듈 - 디코더 레코드를 LiquidationEvent로 변환"""

from __future__ import annotations

from liqstream.models import (
    Exchange, LiquidationEvent, PartialLiquidation, Side, SideBasis, ms_to_datetime,
)

# 거래소별 원시 side 토큰 의미
# Bybit allLiquidation(v5)은 청산된 포지션 방향을 보고함 → 반전 필요
DEFAULT_SIDE_BASES: dict[Exchange, SideBasis] = {
    Exchange.BINANCE: SideBasis.ORDER,
    Exchange.BYBIT: SideBasis.POSITION,
    Exchange.OKX: SideBasis.POSITION,
}

_POSITION_TO_ORDER = {"LONG": Side.SELL, "SHORT": Side.BUY}


def resolve_side(raw_side: str, basis: SideBasis) -> Side:
    """원시 side 토큰 → 청산 주문 방향

    long/short는 항상 포지션 방향으로 해석한다 (long 청산 = 강제 SELL).
    buy/sell은 basis가 POSITION이면 반전한다.
    """
    token = raw_side.strip().upper()
    if token in _POSITION_TO_ORDER:
        return _POSITION_TO_ORDER[token]
    side = Side(token)
    return side.opposite() if basis is SideBasis.POSITION else side


class Normalizer:
    """거래소 태깅, side 해석, value 계산"""

    def __init__(self, side_bases: dict[Exchange, SideBasis] | None = None):
        self.side_bases = dict(DEFAULT_SIDE_BASES)
        if side_bases:
            self.side_bases.update(side_bases)

    def side_basis_for(self, exchange: Exchange, record: PartialLiquidation) -> SideBasis:
        if record.side_basis is not None:
            return record.side_basis
        return self.side_bases[exchange]

    def normalize(self, exchange: Exchange, record: PartialLiquidation) -> LiquidationEvent:
        basis = self.side_basis_for(exchange, record)
        return LiquidationEvent(
            exchange=exchange,
            symbol=record.symbol,
            side=resolve_side(record.raw_side, basis),
            order_type=record.order_type,
            quantity=record.quantity,
            price=record.price,
            order_status=record.order_status,
            timestamp=ms_to_datetime(record.timestamp_ms),
        )
