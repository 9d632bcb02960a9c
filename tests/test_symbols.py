"""Bybit 심볼 조회 테스트
Feature: liquidation-stream
BybitSymbolFetcher 조회, 필터, 재시도 검증
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from liqstream.symbols import BybitSymbolFetcher


def mock_session_for(status=200, data=None):
    mock_resp = MagicMock()
    mock_resp.status = status
    mock_resp.json = AsyncMock(return_value=data)
    mock_resp.__aenter__ = AsyncMock(return_value=mock_resp)
    mock_resp.__aexit__ = AsyncMock(return_value=False)

    mock_session = MagicMock()
    mock_session.get = MagicMock(return_value=mock_resp)
    mock_session.__aenter__ = AsyncMock(return_value=mock_session)
    mock_session.__aexit__ = AsyncMock(return_value=False)
    return mock_session


@pytest.fixture
def fetcher():
    return BybitSymbolFetcher()


class TestFetchSymbols:
    """instruments-info REST 조회 검증"""

    def test_successful_fetch_filters_usdt(self, fetcher):
        """정상 응답 시 USDT로 끝나는 심볼만 반환"""
        data = {"retCode": 0, "result": {"list": [
            {"symbol": "BTCUSDT"}, {"symbol": "ETHPERP"}, {"symbol": "SOLUSDT"}, "junk",
        ]}}
        session = mock_session_for(data=data)

        async def run():
            with patch("aiohttp.ClientSession", return_value=session):
                return await fetcher.fetch_linear_usdt_symbols()

        assert asyncio.run(run()) == ["BTCUSDT", "SOLUSDT"]
        _, kwargs = session.get.call_args
        assert kwargs["params"] == {"category": "linear"}

    def test_retry_on_failure(self, fetcher):
        """실패 시 최대 3회 재시도 후 빈 리스트"""
        call_count = 0

        def make_session(*args, **kwargs):
            nonlocal call_count
            call_count += 1
            raise ConnectionError("timeout")

        async def run():
            with patch("aiohttp.ClientSession", side_effect=make_session), \
                    patch("liqstream.symbols.asyncio.sleep", new=AsyncMock()) as sleep:
                result = await fetcher.fetch_linear_usdt_symbols()
                return result, sleep.await_count

        result, sleeps = asyncio.run(run())
        assert result == []
        assert call_count == 3
        assert sleeps == 2

    def test_http_error_returns_empty(self, fetcher):
        """HTTP 에러 시 빈 리스트"""
        session = mock_session_for(status=429)

        async def run():
            with patch("aiohttp.ClientSession", return_value=session), \
                    patch("liqstream.symbols.asyncio.sleep", new=AsyncMock()):
                return await fetcher.fetch_linear_usdt_symbols()

        assert asyncio.run(run()) == []

    def test_api_error_code_returns_empty(self, fetcher):
        """retCode 오류 시 빈 리스트"""
        session = mock_session_for(data={"retCode": 10001, "retMsg": "params error"})

        async def run():
            with patch("aiohttp.ClientSession", return_value=session), \
                    patch("liqstream.symbols.asyncio.sleep", new=AsyncMock()):
                return await fetcher.fetch_linear_usdt_symbols()

        assert asyncio.run(run()) == []
