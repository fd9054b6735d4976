from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Optional, Union, cast

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, ed448, ed25519, rsa
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from .common import as_utc, colon_fingerprint, iso_utc
from .errors import MalformedCertificateError
from .formats import pem

log = logging.getLogger(__name__)

DIGITAL_SIGNATURE = "digitalSignature"


@dataclass(frozen=True)
class Certificate:
    subject: str
    issuer: str
    not_before: dt.datetime
    not_after: dt.datetime
    serial_number: str
    raw_bytes: bytes = field(repr=False)
    key_usage: FrozenSet[str] = frozenset()
    key_usage_assumed: bool = False

    @property
    def fingerprint(self) -> str:
        return colon_fingerprint(self.raw_bytes)

    @property
    def x509(self) -> x509.Certificate:
        return x509.load_der_x509_certificate(self.raw_bytes)

    @property
    def public_key(self):
        return self.x509.public_key()

    @property
    def public_key_info(self) -> Dict[str, Any]:
        return _public_key_info(self.public_key)

    @property
    def signature_hash(self) -> Optional[str]:
        try:
            algo = self.x509.signature_hash_algorithm
        except UnsupportedAlgorithm:
            return None
        return algo.name if isinstance(algo, hashes.HashAlgorithm) else None

    def matches_public_key(self, public_key) -> bool:
        mine = self.public_key.public_bytes(Encoding.DER, PublicFormat.SubjectPublicKeyInfo)
        theirs = public_key.public_bytes(Encoding.DER, PublicFormat.SubjectPublicKeyInfo)
        return mine == theirs

    def as_dict(self) -> Dict[str, Any]:
        return {
            "subject": self.subject,
            "issuer": self.issuer,
            "valid_from": iso_utc(self.not_before),
            "valid_to": iso_utc(self.not_after),
            "serial_number": self.serial_number,
            "fingerprint": self.fingerprint,
            "key_usage": sorted(self.key_usage),
            "key_usage_assumed": self.key_usage_assumed,
            "public_key": self.public_key_info,
            "signature_hash": self.signature_hash,
        }


def _public_key_info(pk) -> Dict[str, Any]:
    if isinstance(pk, rsa.RSAPublicKey):
        return {"type": "RSA", "size": pk.key_size}
    if isinstance(pk, ec.EllipticCurvePublicKey):
        return {"type": "EC", "curve": getattr(pk.curve, "name", "EC")}
    if isinstance(pk, ed25519.Ed25519PublicKey):
        return {"type": "Ed25519"}
    if isinstance(pk, ed448.Ed448PublicKey):
        return {"type": "Ed448"}
    return {"type": pk.__class__.__name__}


def _key_usage_names(ku: x509.KeyUsage) -> FrozenSet[str]:
    names = set()
    if ku.digital_signature: names.add("digitalSignature")
    if ku.content_commitment: names.add("nonRepudiation")
    if ku.key_encipherment: names.add("keyEncipherment")
    if ku.data_encipherment: names.add("dataEncipherment")
    if ku.key_agreement:
        names.add("keyAgreement")
        if ku.encipher_only: names.add("encipherOnly")
        if ku.decipher_only: names.add("decipherOnly")
    if ku.key_cert_sign: names.add("keyCertSign")
    if ku.crl_sign: names.add("cRLSign")
    return frozenset(names)


def _key_usage(cert: x509.Certificate, raw: bytes, assume_digital_signature: bool) -> tuple[FrozenSet[str], bool]:
    fallback: FrozenSet[str] = frozenset({DIGITAL_SIGNATURE}) if assume_digital_signature else frozenset()
    try:
        ext = cert.extensions.get_extension_for_oid(x509.oid.ExtensionOID.KEY_USAGE)
        return _key_usage_names(cast(x509.KeyUsage, ext.value)), False
    except x509.ExtensionNotFound:
        log.warning(
            "KeyUsage extension absent on %s; applying default usage %s",
            colon_fingerprint(raw), sorted(fallback),
        )
    except ValueError as exc:
        log.warning(
            "KeyUsage extension unreadable on %s (%s); applying default usage %s",
            colon_fingerprint(raw), exc, sorted(fallback),
        )
    return fallback, assume_digital_signature


def _to_der(data: Union[bytes, bytearray, memoryview, str]) -> bytes:
    raw = pem.as_bytes(data)
    try:
        der = pem.unwrap(raw, pem.BEGIN_CERT, pem.END_CERT)
    except ValueError as exc:
        raise MalformedCertificateError(f"Certificate PEM body is not valid base64: {exc}") from exc
    if der is not None:
        return der
    if pem.looks_like_der(raw):
        return raw
    try:
        return pem.b64decode_strict(raw)
    except ValueError as exc:
        raise MalformedCertificateError("Input is neither DER, PEM nor base64 encoded certificate data") from exc


def parse_certificate(
    data: Union[bytes, bytearray, memoryview, str],
    *,
    assume_digital_signature: bool = True,
) -> Certificate:
    """
    Decode a certificate given as DER bytes, PEM text or bare base64.

    Key usage is best effort: when the extension is absent or cannot be read,
    `assume_digital_signature` decides whether `digitalSignature` is asserted.
    The fallback is logged and flagged with `key_usage_assumed`.
    """
    der = _to_der(data)
    try:
        cert = x509.load_der_x509_certificate(der)
    except ValueError as exc:
        raise MalformedCertificateError(f"Could not decode X.509 certificate: {exc}") from exc

    try:
        subject = cert.subject.rfc4514_string()
        issuer = cert.issuer.rfc4514_string()
        not_before = as_utc(cert.not_valid_before_utc)
        not_after = as_utc(cert.not_valid_after_utc)
        serial = format(cert.serial_number, "x")
    except ValueError as exc:
        raise MalformedCertificateError(f"Certificate is missing mandatory fields: {exc}") from exc

    if not_before > not_after:
        raise MalformedCertificateError("Certificate validity window is inverted (notBefore > notAfter)")

    raw = cert.public_bytes(Encoding.DER)
    key_usage, assumed = _key_usage(cert, raw, assume_digital_signature)
    return Certificate(
        subject=subject,
        issuer=issuer,
        not_before=not_before,
        not_after=not_after,
        serial_number=serial,
        raw_bytes=raw,
        key_usage=key_usage,
        key_usage_assumed=assumed,
    )


def certificate_to_pem(cert: Certificate) -> str:
    return pem.wrap(cert.raw_bytes, "CERTIFICATE")
