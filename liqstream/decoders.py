"""거래소별 청산 메시지 디코더 - Binance / Bybit / OKX 원시 메시지 파싱"""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Callable

from liqstream.models import Exchange, PartialLiquidation, SideBasis

logger = logging.getLogger(__name__)

# 디코더가 받아들이는 side 토큰 (대소문자 무시)
ORDER_SIDES = {"BUY", "SELL"}
POSITION_SIDES = {"LONG", "SHORT"}

BYBIT_TOPIC = "allLiquidation"
OKX_CHANNEL = "liquidation-orders"

# Bybit / OKX 청산 피드에는 주문 유형·상태가 없음
DEFAULT_ORDER_TYPE = "LIMIT"
DEFAULT_ORDER_STATUS = "FILLED"


class DecodeError(ValueError):
    """메시지 필드 누락 또는 형식 오류"""


def parse_decimal(raw: Any, name: str) -> Decimal:
    """숫자 문자열 → Decimal. 실패 시 DecodeError"""
    if raw is None or isinstance(raw, bool):
        raise DecodeError(f"{name} 누락")
    try:
        value = Decimal(str(raw))
    except (InvalidOperation, ValueError):
        raise DecodeError(f"{name} 숫자 변환 실패: {raw!r}") from None
    if not value.is_finite():
        raise DecodeError(f"{name} 유한하지 않은 값: {raw!r}")
    return value


def parse_timestamp(raw: Any, name: str = "timestamp") -> int:
    if raw is None or isinstance(raw, bool):
        raise DecodeError(f"{name} 누락")
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise DecodeError(f"{name} 정수 변환 실패: {raw!r}") from None


def _require(obj: dict, *keys: str) -> None:
    missing = [k for k in keys if obj.get(k) in (None, "")]
    if missing:
        raise DecodeError(f"필수 필드 누락: {missing}")


def _check_symbol(raw: Any) -> str:
    if not isinstance(raw, str) or not raw.strip():
        raise DecodeError(f"심볼 형식 오류: {raw!r}")
    return raw.strip()


def _check_amounts(quantity: Decimal, price: Decimal) -> None:
    if quantity < 0:
        raise DecodeError(f"음수 수량: {quantity}")
    if price <= 0:
        raise DecodeError(f"0 이하 가격: {price}")


def _check_side(raw_side: Any, allowed: set[str]) -> str:
    if not isinstance(raw_side, str) or raw_side.strip().upper() not in allowed:
        raise DecodeError(f"알 수 없는 side: {raw_side!r}")
    return raw_side.strip()


# ── Binance ──

def decode_binance(message: Any) -> list[PartialLiquidation]:
    """forceOrder 메시지 디코딩

    raw 스트림({"e": "forceOrder", "o": {...}})과
    combined 스트림({"stream": ..., "data": {...}}) 모두 허용.
    """
    if not isinstance(message, dict):
        logger.warning(f"[디코드-BINANCE] 객체가 아닌 메시지 무시: {message!r}")
        return []
    payload = message.get("data", message)
    order = payload.get("o") if isinstance(payload, dict) else None
    if not isinstance(order, dict):
        # 구독 응답({"result": null, "id": 1}) 등
        if "result" in message and "id" in message:
            return []
        logger.warning(f"[디코드-BINANCE] 주문 객체 없음: {message!r}")
        return []

    try:
        _require(order, "s", "S", "q", "ap", "T")
        quantity = parse_decimal(order["q"], "q")
        price = parse_decimal(order["ap"], "ap")
        _check_amounts(quantity, price)
        record = PartialLiquidation(
            symbol=_check_symbol(order["s"]),
            raw_side=_check_side(order["S"], ORDER_SIDES),
            order_type=order.get("o", ""),
            quantity=quantity,
            price=price,
            order_status=order.get("X", ""),
            timestamp_ms=parse_timestamp(order["T"], "T"),
            side_basis=SideBasis.ORDER,
        )
    except DecodeError as e:
        logger.warning(f"[디코드-BINANCE] 메시지 폐기: {e}")
        return []
    return [record]


# ── Bybit ──

def is_bybit_control(message: dict) -> bool:
    """구독 응답 / pong 응답 여부 ({"op": ..., "success": ...})"""
    return "op" in message and ("success" in message or "ret_msg" in message)


def decode_bybit(message: Any) -> list[PartialLiquidation]:
    """allLiquidation 토픽 메시지 디코딩

    data 배열의 각 원소를 독립적으로 처리하며, 필수 필드(s, S, v, p)가
    빠진 원소는 경고 후 폐기한다. side 해석은 정규화기 설정을 따른다.
    """
    if not isinstance(message, dict):
        logger.warning(f"[디코드-BYBIT] 객체가 아닌 메시지 무시: {message!r}")
        return []
    if is_bybit_control(message):
        if message.get("success") is False:
            logger.warning(f"[디코드-BYBIT] 요청 실패 응답: {message.get('ret_msg')}")
        return []
    topic = message.get("topic")
    if not isinstance(topic, str) or BYBIT_TOPIC not in topic:
        logger.warning(f"[디코드-BYBIT] 청산 토픽 아님: {topic!r}")
        return []
    elements = message.get("data")
    if isinstance(elements, dict):
        elements = [elements]
    if not isinstance(elements, list) or not elements:
        logger.warning(f"[디코드-BYBIT] data 배열 없음: {message!r}")
        return []

    records = []
    for element in elements:
        try:
            if not isinstance(element, dict):
                raise DecodeError(f"원소 형식 오류: {element!r}")
            _require(element, "s", "S", "v", "p")
            quantity = parse_decimal(element["v"], "v")
            price = parse_decimal(element["p"], "p")
            _check_amounts(quantity, price)
            ts = element.get("T", message.get("ts"))
            records.append(PartialLiquidation(
                symbol=_check_symbol(element["s"]),
                raw_side=_check_side(element["S"], ORDER_SIDES),
                order_type=DEFAULT_ORDER_TYPE,
                quantity=quantity,
                price=price,
                order_status=DEFAULT_ORDER_STATUS,
                timestamp_ms=parse_timestamp(ts, "T"),
            ))
        except DecodeError as e:
            logger.warning(f"[디코드-BYBIT] 원소 폐기: {e}")
    return records


# ── OKX ──

def is_okx_control(message: dict) -> bool:
    return "event" in message


def decode_okx(message: Any) -> list[PartialLiquidation]:
    """liquidation-orders 채널 메시지 디코딩

    data: [{instId, details: [{posSide, side, sz, bkPx, ts}, ...]}, ...]
    posSide가 long이면 강제 SELL, short이면 강제 BUY. net이면 side를 그대로 사용.
    """
    if not isinstance(message, dict):
        logger.warning(f"[디코드-OKX] 객체가 아닌 메시지 무시: {message!r}")
        return []
    if is_okx_control(message):
        if message.get("event") == "error":
            logger.warning(
                f"[디코드-OKX] 에러 응답: code={message.get('code')} msg={message.get('msg')}"
            )
        return []
    arg = message.get("arg")
    if not isinstance(arg, dict) or arg.get("channel") != OKX_CHANNEL:
        logger.warning(f"[디코드-OKX] 청산 채널 아님: {arg!r}")
        return []
    groups = message.get("data")
    if not isinstance(groups, list):
        logger.warning(f"[디코드-OKX] data 배열 없음: {message!r}")
        return []

    records = []
    for group in groups:
        if not isinstance(group, dict) or not group.get("instId"):
            logger.warning(f"[디코드-OKX] 종목 그룹 형식 오류: {group!r}")
            continue
        details = group.get("details")
        if not isinstance(details, list):
            logger.warning(f"[디코드-OKX] {group['instId']} details 없음")
            continue
        for detail in details:
            try:
                records.append(_decode_okx_detail(group["instId"], detail))
            except DecodeError as e:
                logger.warning(f"[디코드-OKX] {group['instId']} 체결 폐기: {e}")
    return records


def _decode_okx_detail(inst_id: str, detail: Any) -> PartialLiquidation:
    if not isinstance(detail, dict):
        raise DecodeError(f"체결 형식 오류: {detail!r}")
    _require(detail, "sz", "bkPx", "ts")
    pos_side = str(detail.get("posSide") or "").strip().lower()
    if pos_side in ("long", "short"):
        raw_side, basis = pos_side, SideBasis.POSITION
    else:
        raw_side, basis = _check_side(detail.get("side"), ORDER_SIDES), SideBasis.ORDER
    quantity = parse_decimal(detail["sz"], "sz")
    price = parse_decimal(detail["bkPx"], "bkPx")
    _check_amounts(quantity, price)
    return PartialLiquidation(
        symbol=_check_symbol(inst_id),
        raw_side=raw_side,
        order_type=DEFAULT_ORDER_TYPE,
        quantity=quantity,
        price=price,
        order_status=DEFAULT_ORDER_STATUS,
        timestamp_ms=parse_timestamp(detail["ts"], "ts"),
        side_basis=basis,
    )


def is_control_frame(exchange: Exchange, message: Any) -> bool:
    """이벤트가 아닌 정상 제어 프레임(구독 응답, pong) 여부"""
    if not isinstance(message, dict):
        return False
    if exchange is Exchange.BINANCE:
        return "result" in message and "id" in message
    if exchange is Exchange.BYBIT:
        return is_bybit_control(message) and message.get("success") is not False
    return is_okx_control(message) and message.get("event") != "error"


Decoder = Callable[[Any], "list[PartialLiquidation]"]

DECODERS: dict[Exchange, Decoder] = {
    Exchange.BINANCE: decode_binance,
    Exchange.BYBIT: decode_bybit,
    Exchange.OKX: decode_okx,
}


def decode(exchange: Exchange, message: Any) -> list[PartialLiquidation]:
    """거래소별 디코더로 분기. 빈 리스트 = 이벤트 없음"""
    return DECODERS[exchange](message)
