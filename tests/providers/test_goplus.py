"""
Tests for the GoPlus token security client
"""

import httpx
import pytest

from txpipeline.core.recovery import ProviderUnavailableError, RateLimitError, UnrecoverableError
from txpipeline.core.risk import RiskSeverity
from txpipeline.providers.goplus import GoPlusProvider

TOKEN = "0xAbCdEf0000000000000000000000000000000001"
BASE_URL = "https://api.gopluslabs.io/api/v1"


def token_payload(**overrides) -> dict:
    data = {
        "token_name": "Safe Token",
        "token_symbol": "SAFE",
        "is_open_source": "1",
        "is_honeypot": "0",
        "buy_tax": "0",
        "sell_tax": "0",
        "holder_count": "25000",
        "holders": [],
    }
    data.update(overrides)
    return {"code": 1, "message": "OK", "result": {TOKEN.lower(): data}}


def provider(handler) -> GoPlusProvider:
    return GoPlusProvider(base_url=BASE_URL, timeout_s=5, transport=httpx.MockTransport(handler))


class TestGetTokenSecurity:
    """Test fetching and parsing GoPlus responses."""

    @pytest.mark.asyncio
    async def test_request_shape(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json=token_payload())

        await provider(handler).get_token_security(8453, TOKEN)

        assert seen["path"] == "/api/v1/token_security/8453"
        assert seen["params"] == {"contract_addresses": TOKEN.lower()}

    @pytest.mark.asyncio
    async def test_clean_token(self):
        report = await provider(lambda r: httpx.Response(200, json=token_payload())).get_token_security(1, TOKEN)

        assert report.symbol == "SAFE"
        assert report.dimensions == []
        assert report.risk_level == "safe"
        assert report.is_verified

    @pytest.mark.asyncio
    async def test_honeypot_flags(self):
        payload = token_payload(
            is_honeypot="1",
            sell_tax="0.35",
            is_open_source="0",
            holders=[{"address": "0xwhale", "percent": "0.6", "is_contract": 0}],
        )

        report = await provider(lambda r: httpx.Response(200, json=payload)).get_token_security(1, TOKEN)
        by_name = {d.name: d for d in report.dimensions}

        assert report.is_honeypot
        assert by_name["honeypot"].severity == RiskSeverity.CRITICAL
        assert by_name["sell_tax"].severity == RiskSeverity.HIGH
        assert by_name["not_verified"].severity == RiskSeverity.MEDIUM
        assert by_name["whale_concentration"].severity == RiskSeverity.HIGH
        assert report.sell_tax == pytest.approx(35.0)

    @pytest.mark.asyncio
    async def test_unlocked_liquidity(self):
        payload = token_payload(lp_holders=[
            {"percent": "0.9", "is_locked": 0},
            {"percent": "0.1", "is_locked": 1},
        ])

        report = await provider(lambda r: httpx.Response(200, json=payload)).get_token_security(1, TOKEN)

        dim = next(d for d in report.dimensions if d.name == "unlocked_liquidity")
        assert dim.severity == RiskSeverity.HIGH

    @pytest.mark.asyncio
    async def test_unknown_token_is_none(self):
        body = {"code": 1, "message": "OK", "result": {}}
        assert await provider(lambda r: httpx.Response(200, json=body)).get_token_security(1, TOKEN) is None

    @pytest.mark.asyncio
    async def test_unsupported_chain_skips_request(self):
        def handler(request):
            raise AssertionError("no request expected")

        assert await provider(handler).get_token_security(999999, TOKEN) is None

    @pytest.mark.asyncio
    async def test_rate_limit(self):
        client = provider(lambda r: httpx.Response(429, headers={"retry-after": "4"}))

        with pytest.raises(RateLimitError) as exc_info:
            await client.get_token_security(1, TOKEN)

        assert exc_info.value.retry_after == 4.0

    @pytest.mark.asyncio
    async def test_server_error_is_recoverable(self):
        with pytest.raises(ProviderUnavailableError):
            await provider(lambda r: httpx.Response(503)).get_token_security(1, TOKEN)

    @pytest.mark.asyncio
    async def test_error_code_in_body(self):
        body = {"code": 4029, "message": "too many requests"}
        with pytest.raises(ProviderUnavailableError):
            await provider(lambda r: httpx.Response(200, json=body)).get_token_security(1, TOKEN)

    @pytest.mark.asyncio
    async def test_client_error_not_retryable(self):
        with pytest.raises(UnrecoverableError):
            await provider(lambda r: httpx.Response(400)).get_token_security(1, TOKEN)
