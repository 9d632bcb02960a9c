"""시스템 설정 모듈 - config.yaml 로드 및 Config 데이터클래스"""

from __future__ import annotations

from dataclasses import dataclass, field, asdict
from pathlib import Path

import yaml

from liqstream.models import Exchange, SideBasis


@dataclass
class ReconnectPolicy:
    """재연결 정책 (지수 백오프, 상한 있음)"""
    enabled: bool = True
    base_delay: float = 1.0
    max_delay: float = 60.0
    max_attempts: int = 0        # 0 = 무제한

    def compute_delay(self, attempt: int) -> float:
        """attempt번째 재시도 전 대기 시간: min(base * 2^attempt, max)"""
        return min(self.base_delay * (2 ** min(attempt, 32)), self.max_delay)

    def allows(self, attempt: int) -> bool:
        """attempt번째(0부터) 재연결 허용 여부"""
        if not self.enabled:
            return False
        return self.max_attempts <= 0 or attempt < self.max_attempts


@dataclass
class Config:
    """시스템 설정 (config.yaml에서 로드)"""
    exchanges: list[str] = field(default_factory=lambda: ["BINANCE", "BYBIT", "OKX"])
    bybit_symbols: list[str] = field(
        default_factory=lambda: ["BTCUSDT", "ETHUSDT", "SOLUSDT", "KAITOUSDT"]
    )
    bybit_symbols_auto: bool = False
    okx_inst_type: str = "SWAP"
    bybit_side_basis: str = "position"
    history_capacity: int = 100
    whale_threshold: float = 250000.0
    whale_retention_minutes: int = 60
    whale_capacity: int = 100
    okx_ping_interval: float = 25.0
    bybit_ping_interval: float = 20.0
    reconnect_enabled: bool = True
    reconnect_base_delay: float = 1.0
    reconnect_max_delay: float = 60.0
    reconnect_max_attempts: int = 0
    open_timeout: float = 10.0
    stats_interval: int = 300
    log_dir: str = "./logs"
    log_level: str = "INFO"

    @classmethod
    def from_yaml(cls, path: str) -> "Config":
        """YAML 파일에서 Config 객체 생성"""
        p = Path(path)
        if not p.exists():
            return cls()
        with open(p, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})

    def to_yaml(self, path: str) -> None:
        """Config 객체를 YAML 파일로 저장"""
        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(asdict(self), f, default_flow_style=False, allow_unicode=True)

    def to_dict(self) -> dict:
        """Config를 딕셔너리로 변환"""
        return asdict(self)

    def exchange_list(self) -> list[Exchange]:
        """설정된 거래소 목록 (대소문자 무시, 중복 제거, 순서 유지)"""
        result = []
        for name in self.exchanges:
            exchange = Exchange(name.upper())
            if exchange not in result:
                result.append(exchange)
        return result

    def reconnect_policy(self) -> ReconnectPolicy:
        return ReconnectPolicy(
            enabled=self.reconnect_enabled,
            base_delay=self.reconnect_base_delay,
            max_delay=self.reconnect_max_delay,
            max_attempts=self.reconnect_max_attempts,
        )

    def side_bases(self) -> dict[Exchange, SideBasis]:
        """정규화기에 넘길 거래소별 side 해석 규칙"""
        return {Exchange.BYBIT: SideBasis(self.bybit_side_basis.lower())}
