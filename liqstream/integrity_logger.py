"""스트림 무결성 로깅 모듈 - 거래소별 수신/폐기/재연결 통계"""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

COUNTERS = ("messages", "events", "discarded", "control", "reconnects", "errors")


class IntegrityLogger:
    """거래소별 스트림 통계"""

    MAX_ERROR_BUFFER = 1000  # 에러 기록 최대 보관 수

    def __init__(self, log_dir: Path | str):
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self._counts: dict[str, dict[str, int]] = defaultdict(lambda: dict.fromkeys(COUNTERS, 0))
        self._errors: list[dict] = []
        self._last_message: dict[str, str] = {}

    def _bump(self, exchange: str, counter: str, n: int = 1) -> None:
        self._counts[exchange][counter] += n

    def record_message(self, exchange: str) -> None:
        self._bump(exchange, "messages")
        self._last_message[exchange] = datetime.now(timezone.utc).isoformat()

    def record_events(self, exchange: str, count: int) -> None:
        self._bump(exchange, "events", count)

    def record_discard(self, exchange: str) -> None:
        """디코드 실패로 폐기된 메시지"""
        self._bump(exchange, "discarded")

    def record_control(self, exchange: str) -> None:
        """구독 응답 / pong 등 제어 프레임"""
        self._bump(exchange, "control")

    def record_reconnect(self, exchange: str, timestamp: float, reason: str) -> None:
        self._bump(exchange, "reconnects")
        self._record_error(exchange, timestamp, reason)

    def record_error(self, exchange: str, timestamp: float, reason: str) -> None:
        self._bump(exchange, "errors")
        self._record_error(exchange, timestamp, reason)

    def _record_error(self, exchange: str, timestamp: float, reason: str) -> None:
        if len(self._errors) >= self.MAX_ERROR_BUFFER:
            self._errors = self._errors[-self.MAX_ERROR_BUFFER // 2:]
        self._errors.append({"exchange": exchange, "timestamp": timestamp, "reason": reason})

    def counts(self, exchange: str) -> dict[str, int]:
        return dict(self._counts[exchange])

    def get_periodic_stats(self) -> dict:
        """현재 주기 통계 반환"""
        now = datetime.now(timezone.utc)
        return {
            "timestamp": now.isoformat(),
            "exchanges": {ex: dict(c) for ex, c in self._counts.items()},
            "last_message": dict(self._last_message),
            "errors": list(self._errors),
        }

    async def write_periodic_log(self) -> Path:
        """주기적 통계 JSON 로그 작성 후 주기 통계 리셋"""
        stats = self.get_periodic_stats()
        now = datetime.now(timezone.utc)
        log_file = self.log_dir / f"stats_{now.strftime('%Y%m%d_%H')}.json"
        with open(log_file, "w") as f:
            json.dump(stats, f, indent=2, default=str)
        self._counts.clear()
        self._errors.clear()
        logger.info(f"[로그] {log_file}")
        return log_file
