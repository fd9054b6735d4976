import base64
import binascii
from pathlib import Path
from typing import Annotated, Any, Dict, Optional

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from pydantic import Field

from .certificate import certificate_to_pem, parse_certificate
from .document_service import DocumentService, DocumentServiceClient
from .errors import CertSignError
from .keys import describe_private_key, import_private_key
from .logging_conf import setup_logging
from .path_utils import read_input_file, resolve_path
from .settings import Settings
from .validation import ValidationPolicy, validate_certificate
from .workflow import SigningWorkflow

mcp = FastMCP(
    name="CertSign",
    instructions=(
        "Purpose: sign a server-held document with the user's own X.509 certificate and private key. "
        "The private key is read locally and never leaves this machine; only the signature, the "
        "certificate and the algorithm name are sent to the document service.\n\n"
        "Use me when: you need to check that a certificate is fit for signing, check that a private "
        "key can be imported (and matches the certificate), or sign and submit a document field.\n"
        "Do NOT use me for: chain/revocation validation, timestamps, smart cards, or exporting keys.\n\n"
        "How to call:\n"
        "- Certificate check → `inspect_certificate_from_local_path(path=...)` or "
        "`inspect_certificate_from_b64(filename=..., content_b64=...)`.\n"
        "- Key check → `check_private_key_from_local_path(path=..., passphrase=?, certificate_path=?)`.\n"
        "- Signing → `sign_document_from_local_paths(instance_id=..., signature_field=..., "
        "certificate_path=..., private_key_path=..., passphrase=?, algorithm=?)`.\n"
        "- Status → `get_signature_status(instance_id=..., signature_field=...)`.\n\n"
        "Algorithms: RSA-SHA256 (default), RSA-PSS-SHA256.\n"
        "Safety: passphrases are never logged or persisted; key material is never returned."
    ),
)


def _settings() -> Settings:
    return Settings.from_env()


def _make_document_service(settings: Settings) -> DocumentService:
    return DocumentServiceClient.from_settings(settings)


def _certificate_report(name_key: str, name_val: str, data: bytes) -> Dict[str, Any]:
    settings = _settings()
    try:
        cert = parse_certificate(data, assume_digital_signature=settings.ASSUME_DIGITAL_SIGNATURE)
    except CertSignError as exc:
        raise ToolError(str(exc)) from exc
    verdict = validate_certificate(cert, policy=ValidationPolicy.from_settings(settings))
    return {
        name_key: name_val,
        "certificate": cert.as_dict(),
        **verdict.as_dict(),
        "pem": certificate_to_pem(cert),
    }


@mcp.tool(
    description=(
        "Parse a local certificate (DER, PEM or base64) and report whether it is fit for signing: "
        "subject, issuer, validity window, fingerprint, key usage, errors and warnings."
    ),
    tags={"certsign", "x509", "validation", "filesystem"},
    annotations={
        "title": "Inspect local certificate",
        "readOnlyHint": True,
        "idempotentHint": True,
        "openWorldHint": False,
    },
)
def inspect_certificate_from_local_path(
    path: Annotated[Path, Field(description="Local path to the certificate file (.cer, .crt, .pem).")],
) -> dict:
    try:
        data = read_input_file(path)
    except (OSError, ValueError) as exc:
        raise ToolError(str(exc)) from exc
    return _certificate_report("path", str(resolve_path(path)), data)


@mcp.tool(
    description=(
        "Parse a certificate provided as base64 of the file bytes and report whether it is fit for signing."
    ),
    tags={"certsign", "x509", "validation", "binary"},
    annotations={
        "title": "Inspect base64 certificate",
        "readOnlyHint": True,
        "idempotentHint": True,
        "openWorldHint": False,
    },
)
def inspect_certificate_from_b64(
    filename: Annotated[str, Field(description="Original filename, informational only.")],
    content_b64: Annotated[str, Field(description="RFC 4648 raw base64-encoded bytes of the file")],
) -> dict:
    try:
        data = base64.b64decode(content_b64, validate=True)
    except binascii.Error as exc:
        raise ToolError(f"content_b64 is not valid base64: {exc}") from exc
    return _certificate_report("filename", filename, data)


@mcp.tool(
    description=(
        "Check that a local private key can be imported for signing, optionally unlocking it with a "
        "passphrase and checking it against a certificate. Never returns key material."
    ),
    tags={"certsign", "key", "filesystem"},
    annotations={
        "title": "Check local private key",
        "readOnlyHint": True,
        "idempotentHint": True,
        "openWorldHint": False,
    },
)
def check_private_key_from_local_path(
    path: Annotated[Path, Field(description="Local path to the private key (.key, .pem).")],
    passphrase: Annotated[
        Optional[str],
        Field(description="Passphrase for an encrypted key. Leave null if the key is not encrypted."),
    ] = None,
    certificate_path: Annotated[
        Optional[Path],
        Field(description="Optional certificate to check the key against."),
    ] = None,
) -> dict:
    try:
        data = read_input_file(path)
        cert_data = read_input_file(certificate_path) if certificate_path else None
    except (OSError, ValueError) as exc:
        raise ToolError(str(exc)) from exc

    out: Dict[str, Any] = {"path": str(resolve_path(path)), **describe_private_key(data)}
    try:
        key = import_private_key(data, passphrase)
    except CertSignError as exc:
        out.update({"importable": False, "error": exc.__class__.__name__, "message": str(exc)})
        return out
    try:
        out.update({
            "importable": True,
            "imported_as": key.source,
            "key_size": key.key_size,
            "algorithms": sorted(a.value for a in key.allowed_algorithms),
        })
        if cert_data is not None:
            try:
                cert = parse_certificate(cert_data)
            except CertSignError as exc:
                raise ToolError(str(exc)) from exc
            out["matches_certificate"] = cert.matches_public_key(key.public_key())
    finally:
        key.discard()
    return out


@mcp.tool(
    description="Ask the document service whether a signature already exists for an instance field.",
    tags={"certsign", "status", "network"},
    annotations={
        "title": "Signature status",
        "readOnlyHint": True,
        "idempotentHint": True,
        "openWorldHint": True,
    },
)
async def get_signature_status(
    instance_id: Annotated[str, Field(description="Workflow instance identifier.")],
    signature_field: Annotated[str, Field(description="Name of the signature field.")],
) -> dict:
    documents = _make_document_service(_settings())
    try:
        status = await documents.get_signature_status(instance_id, signature_field)
    except CertSignError as exc:
        raise ToolError(str(exc)) from exc
    finally:
        if isinstance(documents, DocumentServiceClient):
            await documents.aclose()
    return status.model_dump()


@mcp.tool(
    description=(
        "Sign a document field with a local certificate and private key, then submit the signature. "
        "The key stays local; only signature, certificate and algorithm are sent."
    ),
    tags={"certsign", "signing", "network"},
    annotations={
        "title": "Sign and submit",
        "readOnlyHint": False,
        "idempotentHint": False,
        "openWorldHint": True,
    },
)
async def sign_document_from_local_paths(
    instance_id: Annotated[str, Field(description="Workflow instance identifier.")],
    signature_field: Annotated[str, Field(description="Name of the signature field.")],
    certificate_path: Annotated[Path, Field(description="Local path to the signer certificate.")],
    private_key_path: Annotated[Path, Field(description="Local path to the matching private key.")],
    passphrase: Annotated[
        Optional[str],
        Field(description="Passphrase for an encrypted key. Leave null if not required."),
    ] = None,
    algorithm: Annotated[
        Optional[str],
        Field(description="RSA-SHA256 or RSA-PSS-SHA256. Defaults to the configured algorithm."),
    ] = None,
) -> dict:
    settings = _settings()
    try:
        cert_data = read_input_file(certificate_path)
        key_data = read_input_file(private_key_path)
    except (OSError, ValueError) as exc:
        raise ToolError(str(exc)) from exc

    documents = _make_document_service(settings)
    try:
        kwargs: Dict[str, Any] = {"algorithm": algorithm} if algorithm else {}
        async with SigningWorkflow.from_settings(
            instance_id, signature_field, documents, settings, **kwargs
        ) as workflow:
            workflow.load_certificate(cert_data)
            workflow.load_private_key(key_data, passphrase)
            await workflow.prepare()
            outcome = await workflow.confirm()
    except CertSignError as exc:
        raise ToolError(f"{exc.__class__.__name__}: {exc}") from exc
    finally:
        if isinstance(documents, DocumentServiceClient):
            await documents.aclose()

    snap = workflow.snapshot()
    return {
        "instance_id": instance_id,
        "signature_field": signature_field,
        "state": snap.state.value,
        "outcome": outcome.status.value,
        "message": outcome.message,
        "certificate": snap.certificate,
        "warnings": list(snap.verdict.warnings) if snap.verdict else [],
    }


@mcp.prompt(
    name="review_signing_readiness",
    description=(
        "Check a certificate and private key with the inspection tools, then explain whether the user "
        "can sign and what to fix first."
    ),
    tags={"certsign", "prompt", "audit"},
)
def review_signing_readiness(
    certificate_path: Annotated[str, Field(description="Local path to the certificate.")],
    private_key_path: Annotated[str, Field(description="Local path to the private key.")],
) -> str:
    return (
        "Task: decide whether the user is ready to sign with the given certificate and key.\n\n"
        "1) Call `inspect_certificate_from_local_path` with:\n"
        "```json\n"
        f'{{ "path": "{certificate_path}" }}\n'
        "```\n"
        "2) Call `check_private_key_from_local_path` with:\n"
        "```json\n"
        f'{{ "path": "{private_key_path}", "certificate_path": "{certificate_path}" }}\n'
        "```\n"
        "If the key reports `PassphraseRequiredError`, ask the user for the passphrase; never guess it.\n\n"
        "OUTPUT EXACTLY TWO SECTIONS:\n"
        "A) Verdict: READY or NOT READY, with the certificate subject and expiry date\n"
        "B) Issues: errors first, then warnings, one bullet each\n"
        "If a tool call fails, output ERROR: <message> and stop. Do not invent results.\n"
    )


def main() -> None:
    setup_logging(Settings.from_env())
    mcp.run()


if __name__ == "__main__":
    main()
