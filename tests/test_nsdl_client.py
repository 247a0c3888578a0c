"""
Tests for the NSDL dataset client.
"""

import httpx
import pytest

from bond_directory.api.sources.nsdl import DEFAULT_HEADERS, Dataset, NSDLBondClient
from bond_directory.core.config import Settings
from conftest import Router, xlsx_bytes


@pytest.mark.asyncio
async def test_active_listing_requests_tabular_with_type(make_nsdl_client):
    router = Router({"/listofsecurities?type=Active": xlsx_bytes([{"ISIN": "INE002A07809"}])})
    client = make_nsdl_client(router)

    records = await client.get_active_bonds()

    assert records == [{"ISIN": "INE002A07809"}]
    assert router.hits == ["/listofsecurities?type=Active"]


@pytest.mark.asyncio
async def test_each_dataset_has_its_own_breaker(make_nsdl_client):
    router = Router({"/creditratingwise": xlsx_bytes([{"ISIN": "INE002A07809"}])})
    client = make_nsdl_client(router)

    await client.get_credit_rating_wise()
    await client.get_due_for_redemption()

    assert client.executor(Dataset.CREDIT_RATING_WISE) is not client.executor(Dataset.DUE_FOR_REDEMPTION)
    assert client.circuit_breaker_states() == {"credit_rating_wise": "CLOSED", "due_for_redemption": "CLOSED"}


@pytest.mark.asyncio
async def test_listed_securities_paginates(make_nsdl_client):
    def listed(request):
        page = int(request.url.params["pgno"])
        return httpx.Response(200, json=[{"isin": f"INE00{page}A01010"}] if page <= 2 else [])

    client = make_nsdl_client(Router({"/listedsecurities": listed}))

    records = await client.get_all_listed_securities(page_size=1)

    assert [record["isin"] for record in records] == ["INE001A01010", "INE002A01010"]


@pytest.mark.asyncio
async def test_dropdown_metadata_passes_attribute_key(make_nsdl_client):
    seen = {}

    def dropdown(request):
        seen.update(request.url.params)
        return httpx.Response(200, json={"data": [{"value": "Banking"}]})

    client = make_nsdl_client(Router({"/dropdown": dropdown}))

    assert await client.get_dropdown_metadata("sector") == [{"value": "Banking"}]
    assert seen == {"attrkey": "sector"}


@pytest.mark.asyncio
async def test_connection_check(make_nsdl_client):
    healthy = make_nsdl_client(Router({"/issuertypewise": xlsx_bytes([{"Issuer Type": "PSU"}])}))
    assert await healthy.test_connection() == {"ok": True, "record_count": 1}

    broken = make_nsdl_client(Router({"/issuertypewise": 403}))
    result = await broken.test_connection()
    assert result["ok"] is False
    assert result["error_code"] == "SESSION_EXPIRED"


@pytest.mark.asyncio
async def test_from_settings_sends_browser_headers():
    settings = Settings(
        NSDL_BASE_URL="https://nsdl.test/bdsinfo",
        NSDL_COOKIE_NL01="a",
        NSDL_COOKIE_NL1E="b",
        REQUEST_DELAY_MS=0,
        JITTER_MAX_MS=0
    )

    async with NSDLBondClient.from_settings(settings) as client:
        headers = client.config.headers

    assert headers["User-Agent"] == DEFAULT_HEADERS["User-Agent"]
    assert headers["Referer"] == settings.NSDL_REFERER
    assert client.config.rate_limit.request_delay_seconds == 0
    assert client.session_store.get().is_complete
