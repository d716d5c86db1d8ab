"""
Tests for the attestation ledgers (local hash chain and remote HTTP).
"""

import json

import httpx
import pytest

from app.services.attestation import (
    GENESIS_HASH,
    AttestationError,
    AttestationTimeoutError,
    HttpLedgerAttestation,
    LocalLedgerAttestation,
)

DIGEST_A = "a" * 64
DIGEST_B = "b" * 64


# =============================================================================
# Local ledger
# =============================================================================

@pytest.fixture
def ledger(tmp_path):
    return LocalLedgerAttestation(str(tmp_path / "ledger" / "attestations.jsonl"))


@pytest.mark.anyio
async def test_attest_returns_hex_hash_and_confirms(ledger):
    attestation_hash = await ledger.attest(DIGEST_A, "doc-1")

    assert attestation_hash.startswith("0x")
    assert len(attestation_hash) == 66
    assert await ledger.confirm(DIGEST_A, attestation_hash)
    assert not await ledger.confirm(DIGEST_B, attestation_hash)
    assert not await ledger.confirm(DIGEST_A, "0x" + "f" * 64)


@pytest.mark.anyio
async def test_entries_are_chained(ledger):
    first = await ledger.attest(DIGEST_A, "doc-1")
    second = await ledger.attest(DIGEST_B, "doc-2")

    lines = ledger.ledger_path.read_text().splitlines()
    entries = [json.loads(line) for line in lines]
    assert entries[0]["previousHash"] == GENESIS_HASH
    assert entries[1]["previousHash"] == first
    assert entries[1]["hash"] == second
    assert await ledger.verify_chain()


@pytest.mark.anyio
async def test_rewritten_entry_breaks_chain(ledger):
    attestation_hash = await ledger.attest(DIGEST_A, "doc-1")
    await ledger.attest(DIGEST_B, "doc-2")

    entries = [json.loads(line) for line in ledger.ledger_path.read_text().splitlines()]
    entries[0]["contentSha256"] = DIGEST_B
    ledger.ledger_path.write_text("".join(json.dumps(e) + "\n" for e in entries))

    assert not await ledger.verify_chain()
    assert not await ledger.confirm(DIGEST_B, attestation_hash)


@pytest.mark.anyio
async def test_empty_ledger(ledger):
    assert await ledger.verify_chain()
    assert not await ledger.confirm(DIGEST_A, "0x00")


# =============================================================================
# Remote ledger
# =============================================================================

def remote(handler):
    return HttpLedgerAttestation(
        base_url="https://ledger.test/api",
        api_key="ledger-key",
        timeout=1.0,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.anyio
async def test_remote_attest():
    seen = {}

    def handler(request: httpx.Request):
        seen["path"] = request.url.path
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={"hash": "0xabc"})

    assert await remote(handler).attest(DIGEST_A, "doc-1") == "0xabc"
    assert seen == {
        "path": "/api/attestations",
        "auth": "Bearer ledger-key",
        "body": {"documentId": "doc-1", "contentSha256": DIGEST_A},
    }


@pytest.mark.anyio
async def test_remote_confirm():
    def handler(request):
        if request.url.path.endswith("/0xabc"):
            return httpx.Response(200, json={"contentSha256": DIGEST_A})
        return httpx.Response(404)

    ledger = remote(handler)
    assert await ledger.confirm(DIGEST_A, "0xabc")
    assert not await ledger.confirm(DIGEST_B, "0xabc")
    assert not await ledger.confirm(DIGEST_A, "0xdef")


@pytest.mark.anyio
async def test_remote_timeout():
    def handler(request):
        raise httpx.ConnectTimeout("slow", request=request)

    with pytest.raises(AttestationTimeoutError):
        await remote(handler).attest(DIGEST_A, "doc-1")


@pytest.mark.anyio
async def test_remote_failure():
    def handler(request):
        return httpx.Response(500, text="boom")

    with pytest.raises(AttestationError):
        await remote(handler).attest(DIGEST_A, "doc-1")
