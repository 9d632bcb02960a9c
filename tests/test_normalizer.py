"""정규화기 테스트
Feature: liquidation-stream
Property 5: side 해석 규칙 (주문 기준 / 포지션 기준)
"""

from decimal import Decimal

import pytest
from hypothesis import given, strategies as st, settings

from liqstream.config import Config
from liqstream.decoders import decode_bybit
from liqstream.models import Exchange, PartialLiquidation, Side, SideBasis
from liqstream.normalizer import DEFAULT_SIDE_BASES, Normalizer, resolve_side


def make_partial(raw_side="SELL", side_basis=None, quantity="2", price="3000"):
    return PartialLiquidation(
        symbol="BTCUSDT", raw_side=raw_side, order_type="LIMIT",
        quantity=Decimal(quantity), price=Decimal(price), order_status="FILLED",
        timestamp_ms=1700000000000, side_basis=side_basis,
    )


class TestResolveSide:

    @pytest.mark.parametrize("raw, basis, expected", [
        ("BUY", SideBasis.ORDER, Side.BUY),
        ("sell", SideBasis.ORDER, Side.SELL),
        ("Buy", SideBasis.POSITION, Side.SELL),
        ("Sell", SideBasis.POSITION, Side.BUY),
        ("long", SideBasis.POSITION, Side.SELL),
        ("short", SideBasis.POSITION, Side.BUY),
        ("LONG", SideBasis.ORDER, Side.SELL),
    ])
    def test_resolution_table(self, raw, basis, expected):
        """기준별 side 해석표"""
        assert resolve_side(raw, basis) is expected

    def test_unknown_token(self):
        """알 수 없는 side 토큰은 ValueError"""
        with pytest.raises(ValueError):
            resolve_side("flat", SideBasis.ORDER)

    @given(side=st.sampled_from(["BUY", "SELL"]))
    @settings(max_examples=10)
    def test_position_basis_always_inverts(self, side):
        """포지션 기준은 주문 기준의 반대"""
        assert resolve_side(side, SideBasis.POSITION) is resolve_side(side, SideBasis.ORDER).opposite()


class TestNormalizer:

    def test_tags_exchange_and_computes_value(self):
        """거래소 태그, value, 타임스탬프 변환"""
        event = Normalizer().normalize(Exchange.OKX, make_partial("long", SideBasis.POSITION))
        assert event.exchange is Exchange.OKX
        assert event.value == Decimal(6000)
        assert event.timestamp_ms == 1700000000000

    def test_record_basis_overrides_exchange_rule(self):
        """레코드의 기준이 거래소 기본 규칙보다 우선"""
        normalizer = Normalizer()
        event = normalizer.normalize(Exchange.BYBIT, make_partial("Sell", SideBasis.ORDER))
        assert event.side is Side.SELL

    def test_defaults(self):
        assert DEFAULT_SIDE_BASES[Exchange.BINANCE] is SideBasis.ORDER
        assert Normalizer().side_bases[Exchange.BYBIT] is SideBasis.POSITION


class TestBybitSideContract:
    """Bybit v5 allLiquidation: S는 청산된 포지션 방향 (Buy = long 청산)

    기본 설정은 반전, order 설정은 원시 값 그대로.
    """

    MESSAGE = {
        "topic": "allLiquidation.ROSEUSDT", "type": "snapshot", "ts": 1739502303204,
        "data": [{"T": 1739502302929, "s": "ROSEUSDT", "S": "Buy", "v": "20000", "p": "0.04499"}],
    }

    def test_default_config_inverts(self):
        """기본 설정: Buy → 강제 SELL"""
        [record] = decode_bybit(self.MESSAGE)
        normalizer = Normalizer(Config().side_bases())
        event = normalizer.normalize(Exchange.BYBIT, record)
        assert event.side is Side.SELL
        assert event.value == Decimal("899.80000")

    def test_order_basis_keeps_raw_side(self):
        """order 설정: 원시 side 유지"""
        [record] = decode_bybit(self.MESSAGE)
        normalizer = Normalizer(Config(bybit_side_basis="order").side_bases())
        assert normalizer.normalize(Exchange.BYBIT, record).side is Side.BUY
