import pytest
from aiohttp import web

from energy_sync.burn import (
    REJECT_CANCELLED,
    REJECT_INVALID,
    REJECT_NETWORK,
    BurnRejected,
    HttpBurnSubmitter,
    build_burn_request,
)
from energy_sync.config import (
    DEFAULT_BURN_CONTRACT,
    DEFAULT_ENERGY_TOKEN,
    DEFAULT_REWARD_ISSUER,
    DEFAULT_REWARD_TOKEN,
)
from energy_sync.http import close_session

CALLER = "SP3CALLER"


def request(amount=250):
    return build_burn_request(
        CALLER,
        amount,
        contract=DEFAULT_BURN_CONTRACT,
        reward_issuer=DEFAULT_REWARD_ISSUER,
        energy_token=DEFAULT_ENERGY_TOKEN,
        reward_token=DEFAULT_REWARD_TOKEN,
    )


def test_burn_payload_shape():
    payload = request().to_payload()
    assert payload["contract"] == DEFAULT_BURN_CONTRACT
    assert payload["functionName"] == "claim"
    assert payload["functionArgs"] == [{"type": "uint", "value": "250"}]
    assert payload["postConditionMode"] == "deny"
    assert payload["sender"] == CALLER

    energy, reward = payload["postConditions"]
    assert energy["address"] == CALLER
    assert energy["condition"] == "lte"
    assert energy["amount"] == "250"
    assert (energy["asset"], energy["assetName"]) == tuple(DEFAULT_ENERGY_TOKEN.split("::"))
    assert reward["address"] == DEFAULT_REWARD_ISSUER
    assert reward["assetName"] == "hooter"


def test_burn_request_rejects_non_positive_amount():
    with pytest.raises(ValueError):
        request(0)


async def _serve(handler):
    app = web.Application()
    app.router.add_post("/sign", handler)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", 0)
    await site.start()
    port = site._server.sockets[0].getsockname()[1]
    return runner, f"http://127.0.0.1:{port}/sign"


@pytest.mark.asyncio
async def test_http_submitter_returns_txid():
    seen = []

    async def handler(req):
        seen.append(await req.json())
        return web.json_response({"txid": "0xbeef"})

    runner, url = await _serve(handler)
    try:
        txid = await HttpBurnSubmitter(url).submit(request())
    finally:
        await close_session()
        await runner.cleanup()
    assert txid == "0xbeef"
    assert seen[0]["functionArgs"] == [{"type": "uint", "value": "250"}]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body, status, kind",
    [
        ({"error": {"code": "user_rejected"}}, 200, REJECT_CANCELLED),
        ({"error": "cancelled"}, 200, REJECT_CANCELLED),
        ({"error": {"code": "bad_nonce"}}, 200, REJECT_INVALID),
        ({"ok": True}, 200, REJECT_INVALID),
        ({"message": "boom"}, 500, REJECT_INVALID),
    ],
)
async def test_http_submitter_rejections(body, status, kind):
    async def handler(req):
        return web.json_response(body, status=status)

    runner, url = await _serve(handler)
    try:
        with pytest.raises(BurnRejected) as info:
            await HttpBurnSubmitter(url).submit(request())
    finally:
        await close_session()
        await runner.cleanup()
    assert info.value.kind == kind


@pytest.mark.asyncio
async def test_http_submitter_unreachable_is_network_error():
    runner, url = await _serve(lambda req: web.json_response({}))
    await runner.cleanup()
    try:
        with pytest.raises(BurnRejected) as info:
            await HttpBurnSubmitter(url).submit(request())
    finally:
        await close_session()
    assert info.value.kind == REJECT_NETWORK
