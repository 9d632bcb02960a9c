"""Bybit 심볼 조회 모듈 - USDT 무기한(linear) 종목 목록 REST 조회"""

from __future__ import annotations

import asyncio
import logging

import aiohttp

logger = logging.getLogger(__name__)


class BybitSymbolFetcher:
    """Bybit linear 종목 목록 조회 (최대 3회 재시도)"""

    INSTRUMENTS_URL = "https://api.bybit.com/v5/market/instruments-info"

    def __init__(self, max_retries: int = 3, quote: str = "USDT"):
        self.max_retries = max_retries
        self.quote = quote

    async def fetch_linear_usdt_symbols(self) -> list[str]:
        """USDT로 끝나는 linear 심볼 목록. 실패 시 빈 리스트"""
        for attempt in range(self.max_retries):
            try:
                async with aiohttp.ClientSession() as session:
                    async with session.get(
                        self.INSTRUMENTS_URL,
                        params={"category": "linear"},
                        timeout=aiohttp.ClientTimeout(total=10),
                    ) as resp:
                        if resp.status != 200:
                            logger.warning(f"[심볼] Bybit HTTP {resp.status}")
                        else:
                            data = await resp.json()
                            if data.get("retCode") == 0:
                                return self._extract(data)
                            logger.warning(f"[심볼] Bybit retCode={data.get('retCode')} {data.get('retMsg')}")
            except Exception as e:
                logger.warning(f"[심볼] Bybit 조회 실패 (시도 {attempt+1}/{self.max_retries}): {e}")
            if attempt < self.max_retries - 1:
                await asyncio.sleep(2 ** attempt)
        return []

    def _extract(self, data: dict) -> list[str]:
        items = (data.get("result") or {}).get("list") or []
        symbols = [
            item["symbol"] for item in items
            if isinstance(item, dict) and str(item.get("symbol", "")).endswith(self.quote)
        ]
        logger.info(f"[심볼] Bybit {self.quote} 심볼 {len(symbols)}개 조회")
        return symbols
