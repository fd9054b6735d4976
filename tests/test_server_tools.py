from __future__ import annotations

import base64
import datetime as dt

import pytest
from fastmcp import Client
from fastmcp.exceptions import ToolError

from _util import PASSPHRASE, FakeDocuments, cert_pem, encrypted_pkcs8_pem, make_cert, pkcs8_pem, rsa_key
from certsign.common import utc_now

DAY = dt.timedelta(days=1)


@pytest.fixture(autouse=True)
def _env(monkeypatch):
    for name in ("CERTSIGN_EXPIRY_WARNING_DAYS", "CERTSIGN_SIGNATURE_ALGORITHM", "CERTSIGN_ASSUME_DIGITAL_SIGNATURE"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def files(tmp_path):
    now = utc_now().replace(microsecond=0)
    cert = make_cert(not_before=now - DAY, not_after=now + 365 * DAY)
    paths = {
        "cert": tmp_path / "signer.crt",
        "key": tmp_path / "signer.key",
        "enc_key": tmp_path / "signer.enc.key",
        "other_key": tmp_path / "other.key",
        "expired": tmp_path / "expired.crt",
    }
    paths["cert"].write_bytes(cert_pem(cert))
    paths["key"].write_bytes(pkcs8_pem(rsa_key()))
    paths["enc_key"].write_bytes(encrypted_pkcs8_pem(rsa_key()))
    paths["other_key"].write_bytes(pkcs8_pem(rsa_key(slot=1)))
    paths["expired"].write_bytes(cert_pem(make_cert(not_before=now - 400 * DAY, not_after=now - DAY)))
    return paths


@pytest.fixture()
def documents(monkeypatch):
    fake = FakeDocuments(expires_at=utc_now() + dt.timedelta(minutes=15))
    monkeypatch.setattr("certsign.server._make_document_service", lambda settings: fake)
    return fake


@pytest.mark.asyncio
async def test_inspect_certificate_from_local_path(files):
    from certsign.server import mcp

    async with Client(mcp) as client:
        res = await client.call_tool("inspect_certificate_from_local_path", {"path": str(files["cert"])})
    out = res.data
    assert out["valid"] is True
    assert out["errors"] == []
    assert out["certificate"]["subject"].startswith("CN=Jane Signer")
    assert out["certificate"]["key_usage"] == ["digitalSignature", "nonRepudiation"]
    assert out["pem"].startswith("-----BEGIN CERTIFICATE-----")


@pytest.mark.asyncio
async def test_inspect_expired_certificate_from_b64(files):
    from certsign.server import mcp

    data_b64 = base64.b64encode(files["expired"].read_bytes()).decode("ascii")
    async with Client(mcp) as client:
        res = await client.call_tool("inspect_certificate_from_b64", {"filename": "expired.crt", "content_b64": data_b64})
    out = res.data
    assert out["filename"] == "expired.crt"
    assert out["valid"] is False
    assert out["errors"] == ["Certificate has expired"]


@pytest.mark.asyncio
async def test_inspect_garbage_is_a_tool_error():
    from certsign.server import mcp

    data_b64 = base64.b64encode(b"not a certificate").decode("ascii")
    async with Client(mcp) as client:
        with pytest.raises(ToolError):
            await client.call_tool("inspect_certificate_from_b64", {"filename": "x.crt", "content_b64": data_b64})


@pytest.mark.asyncio
async def test_check_private_key_matches_certificate(files):
    from certsign.server import mcp

    async with Client(mcp) as client:
        res = await client.call_tool(
            "check_private_key_from_local_path",
            {"path": str(files["key"]), "certificate_path": str(files["cert"])},
        )
        other = await client.call_tool(
            "check_private_key_from_local_path",
            {"path": str(files["other_key"]), "certificate_path": str(files["cert"])},
        )
    out = res.data
    assert out["importable"] is True
    assert out["container"] == "PKCS8"
    assert out["imported_as"] == "PKCS8/RSASSA-PKCS1-v1_5-SHA256"
    assert out["key_size"] == 2048
    assert out["algorithms"] == ["RSA-PSS-SHA256", "RSA-SHA256"]
    assert out["matches_certificate"] is True
    assert "PRIVATE KEY" not in str(out)
    assert other.data["matches_certificate"] is False


@pytest.mark.asyncio
async def test_check_encrypted_key_reports_passphrase_needed(files):
    from certsign.server import mcp

    async with Client(mcp) as client:
        locked = await client.call_tool("check_private_key_from_local_path", {"path": str(files["enc_key"])})
        unlocked = await client.call_tool(
            "check_private_key_from_local_path", {"path": str(files["enc_key"]), "passphrase": PASSPHRASE}
        )
    assert locked.data["importable"] is False
    assert locked.data["encrypted"] is True
    assert locked.data["error"] == "PassphraseRequiredError"
    assert unlocked.data["importable"] is True
    assert unlocked.data["imported_as"] == "PKCS8/encrypted"


@pytest.mark.asyncio
async def test_sign_document_from_local_paths(files, documents):
    from certsign.server import mcp

    async with Client(mcp) as client:
        res = await client.call_tool(
            "sign_document_from_local_paths",
            {
                "instance_id": "inst-1",
                "signature_field": "approval",
                "certificate_path": str(files["cert"]),
                "private_key_path": str(files["enc_key"]),
                "passphrase": PASSPHRASE,
                "algorithm": "RSA-PSS-SHA256",
            },
        )
    out = res.data
    assert out["state"] == "complete"
    assert out["outcome"] == "verified"
    assert out["warnings"] == []
    (sent,) = documents.submissions
    assert sent.algorithm == "RSA-PSS-SHA256"
    assert PASSPHRASE not in str(out)


@pytest.mark.asyncio
async def test_sign_with_expired_certificate_fails(files, documents):
    from certsign.server import mcp

    async with Client(mcp) as client:
        with pytest.raises(ToolError) as ei:
            await client.call_tool(
                "sign_document_from_local_paths",
                {
                    "instance_id": "inst-1",
                    "signature_field": "approval",
                    "certificate_path": str(files["expired"]),
                    "private_key_path": str(files["key"]),
                },
            )
    assert "CertificateInvalidError" in str(ei.value)
    assert documents.submissions == []


@pytest.mark.asyncio
async def test_get_signature_status(documents):
    from certsign.server import mcp

    async with Client(mcp) as client:
        res = await client.call_tool("get_signature_status", {"instance_id": "inst-1", "signature_field": "approval"})
    assert res.data["signature_field"] == "approval"
    assert res.data["exists"] is False


@pytest.mark.asyncio
async def test_review_prompt_mentions_both_tools():
    from certsign.server import mcp

    async with Client(mcp) as client:
        result = await client.get_prompt(
            "review_signing_readiness", {"certificate_path": "/tmp/a.crt", "private_key_path": "/tmp/a.key"}
        )
    text = result.messages[0].content.text
    assert "inspect_certificate_from_local_path" in text
    assert "check_private_key_from_local_path" in text
