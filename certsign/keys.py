from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Tuple, Union

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import load_der_private_key, load_pem_private_key

from .errors import (
    CertSignError,
    IncorrectPassphraseError,
    PassphraseRequiredError,
    UnsupportedAlgorithmError,
    UnsupportedKeyFormatError,
)
from .formats import pem, pkcs8
from .signer import SignatureAlgorithm

log = logging.getLogger(__name__)

KeyInput = Union[bytes, bytearray, memoryview, str]


class SigningKey:
    """
    Sign-only handle on an RSA private key.

    The key cannot be exported, pickled or copied. `discard()` drops it and
    every later `sign` raises.
    """

    __slots__ = ("_key", "_algorithm", "_allowed", "_source")

    def __init__(self, key: rsa.RSAPrivateKey, algorithm: SignatureAlgorithm,
                 allowed: FrozenSet[SignatureAlgorithm], source: str):
        self._key: Optional[rsa.RSAPrivateKey] = key
        self._algorithm = algorithm
        self._allowed = allowed
        self._source = source

    @property
    def algorithm(self) -> SignatureAlgorithm:
        return self._algorithm

    @property
    def allowed_algorithms(self) -> FrozenSet[SignatureAlgorithm]:
        return self._allowed

    @property
    def source(self) -> str:
        return self._source

    @property
    def key_size(self) -> int:
        return self._require().key_size

    @property
    def discarded(self) -> bool:
        return self._key is None

    def public_key(self) -> rsa.RSAPublicKey:
        return self._require().public_key()

    def sign(self, data: bytes, algorithm: SignatureAlgorithm) -> bytes:
        if algorithm not in self._allowed:
            raise UnsupportedAlgorithmError(
                f"Key imported as {self._source} cannot sign with {algorithm.value}"
            )
        return self._require().sign(data, algorithm.rsa_padding(), algorithm.hash_algorithm())

    def discard(self) -> None:
        self._key = None

    def _require(self) -> rsa.RSAPrivateKey:
        if self._key is None:
            raise CertSignError("Signing key has been discarded")
        return self._key

    def __repr__(self) -> str:
        state = "discarded" if self._key is None else "loaded"
        return f"<SigningKey {self._source} {self._algorithm.value} {state}>"

    def __reduce_ex__(self, protocol):
        raise TypeError("SigningKey cannot be serialized")

    def __copy__(self):
        raise TypeError("SigningKey cannot be copied")

    def __deepcopy__(self, memo):
        raise TypeError("SigningKey cannot be copied")


_BOTH = frozenset({SignatureAlgorithm.RSA_SHA256, SignatureAlgorithm.RSA_PSS_SHA256})
_PSS_ONLY = frozenset({SignatureAlgorithm.RSA_PSS_SHA256})


class _Rejected(Exception):
    pass


def _as_rsa(key) -> rsa.RSAPrivateKey:
    if not isinstance(key, rsa.RSAPrivateKey):
        raise _Rejected(f"{key.__class__.__name__} is not an RSA key")
    return key


def _pkcs8_with(required_oid: str) -> Callable[[bytearray], rsa.RSAPrivateKey]:
    def load(der: bytearray) -> rsa.RSAPrivateKey:
        oid = pkcs8.private_key_algorithm(bytes(der))
        if oid is None:
            raise _Rejected("not a PKCS#8 PrivateKeyInfo")
        if oid != required_oid:
            raise _Rejected(f"key algorithm is {pkcs8.algorithm_name(oid)}")
        try:
            return _as_rsa(load_der_private_key(der, password=None))
        except (ValueError, UnsupportedAlgorithm) as exc:
            raise _Rejected(str(exc)) from exc
    return load


def _pkcs1(der: bytearray) -> rsa.RSAPrivateKey:
    if pkcs8.private_key_algorithm(bytes(der)) is not None:
        raise _Rejected("PKCS#8 structure, not PKCS#1")
    try:
        return _as_rsa(load_der_private_key(der, password=None))
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise _Rejected(str(exc)) from exc


@dataclass(frozen=True)
class KeyCandidate:
    label: str
    algorithm: SignatureAlgorithm
    allowed: FrozenSet[SignatureAlgorithm]
    load: Callable[[bytearray], rsa.RSAPrivateKey]


CANDIDATES: Tuple[KeyCandidate, ...] = (
    KeyCandidate("PKCS8/RSASSA-PKCS1-v1_5-SHA256", SignatureAlgorithm.RSA_SHA256, _BOTH,
                 _pkcs8_with(pkcs8.RSA_ENCRYPTION_OID)),
    KeyCandidate("PKCS8/RSA-PSS-SHA256", SignatureAlgorithm.RSA_PSS_SHA256, _PSS_ONLY,
                 _pkcs8_with(pkcs8.RSASSA_PSS_OID)),
    KeyCandidate("PKCS1/RSASSA-PKCS1-v1_5-SHA256", SignatureAlgorithm.RSA_SHA256, _BOTH, _pkcs1),
)


def _zero(buf: bytearray) -> None:
    for i in range(len(buf)):
        buf[i] = 0


def _decode(raw: bytes) -> bytearray:
    label = pem.private_key_label(raw)
    if label is not None:
        end = label.replace(b"BEGIN", b"END")
        der = pem.unwrap(raw, label, end)
        return bytearray(der or b"")
    if pem.looks_like_der(raw):
        return bytearray(raw)
    return bytearray(pem.b64decode_strict(raw))


def _passphrase_bytes(passphrase: Optional[str]) -> Optional[bytes]:
    if passphrase is None or passphrase == "":
        return None
    return passphrase.encode("utf-8")


def _import_legacy_encrypted(raw: bytes, passphrase: Optional[str]) -> SigningKey:
    secret = _passphrase_bytes(passphrase)
    if secret is None:
        raise PassphraseRequiredError()
    try:
        key = load_pem_private_key(raw, password=secret)
    except ValueError as exc:
        raise IncorrectPassphraseError() from exc
    except UnsupportedAlgorithm as exc:
        raise UnsupportedKeyFormatError([("PEM/legacy-encrypted", str(exc))]) from exc
    try:
        rsa_key = _as_rsa(key)
    except _Rejected as exc:
        raise UnsupportedKeyFormatError([("PEM/legacy-encrypted", str(exc))]) from exc
    return SigningKey(rsa_key, SignatureAlgorithm.RSA_SHA256, _BOTH, "PKCS1/encrypted-PEM")


def _import_encrypted_pkcs8(der: bytearray, passphrase: Optional[str]) -> SigningKey:
    secret = _passphrase_bytes(passphrase)
    if secret is None:
        raise PassphraseRequiredError()
    try:
        key = load_der_private_key(der, password=secret)
    except ValueError as exc:
        raise IncorrectPassphraseError() from exc
    except UnsupportedAlgorithm as exc:
        raise UnsupportedKeyFormatError([("PKCS8/encrypted", str(exc))]) from exc
    try:
        rsa_key = _as_rsa(key)
    except _Rejected as exc:
        raise UnsupportedKeyFormatError([("PKCS8/encrypted", str(exc))]) from exc
    return SigningKey(rsa_key, SignatureAlgorithm.RSA_SHA256, _BOTH, "PKCS8/encrypted")


def import_private_key(data: KeyInput, passphrase: Optional[str] = None) -> SigningKey:
    """
    Import an RSA private key for signing.

    PEM framing (PRIVATE KEY, RSA PRIVATE KEY, ENCRYPTED PRIVATE KEY), bare
    base64 and DER are accepted. Encrypted PKCS#8 is decrypted with
    `passphrase`; otherwise every entry of `CANDIDATES` is tried in order and
    the failures are reported together in `UnsupportedKeyFormatError`.
    The decoded key bytes are zeroed before returning.
    """
    raw = pem.as_bytes(data)
    if pem.LEGACY_ENCRYPTED_HEADER in raw:
        return _import_legacy_encrypted(raw, passphrase)

    try:
        der = _decode(raw)
    except ValueError as exc:
        raise UnsupportedKeyFormatError([("decode", str(exc))]) from exc

    try:
        if pkcs8.is_encrypted(bytes(der)):
            return _import_encrypted_pkcs8(der, passphrase)

        if passphrase:
            log.debug("Key is not encrypted; ignoring supplied passphrase")

        attempts: List[Tuple[str, str]] = []
        for candidate in CANDIDATES:
            try:
                key = candidate.load(der)
            except _Rejected as exc:
                attempts.append((candidate.label, str(exc)))
                continue
            log.info("Private key imported as %s (%d bits)", candidate.label, key.key_size)
            return SigningKey(key, candidate.algorithm, candidate.allowed, candidate.label)
        raise UnsupportedKeyFormatError(attempts)
    finally:
        _zero(der)


def describe_private_key(data: KeyInput) -> Dict[str, Any]:
    """Non-secret facts about a key blob: container, encryption, algorithm. Never key material."""
    raw = pem.as_bytes(data)
    if pem.LEGACY_ENCRYPTED_HEADER in raw:
        return {"container": "PKCS1", "encrypted": True, "encryption": {"algorithm": "legacy-pem"}}
    try:
        der = _decode(raw)
    except ValueError:
        return {"container": "UNKNOWN", "encrypted": False}
    try:
        if pkcs8.is_encrypted(bytes(der)):
            info = pkcs8.encryption_params(bytes(der)) or {}
            out: Dict[str, Any] = {"container": "PKCS8", "encrypted": True, "encryption": info}
            warns = pkcs8.encryption_warnings(info)
            if warns:
                out["warnings"] = warns
            return out
        oid = pkcs8.private_key_algorithm(bytes(der))
        if oid is not None:
            out = {"container": "PKCS8", "encrypted": False, "algorithm": pkcs8.algorithm_name(oid)}
            try:
                loaded = load_der_private_key(der, password=None)
            except (ValueError, UnsupportedAlgorithm):
                loaded = None
            if isinstance(loaded, rsa.RSAPrivateKey):
                out["key_size"] = loaded.key_size
            return out
        try:
            key = _pkcs1(der)
        except _Rejected:
            return {"container": "UNKNOWN", "encrypted": False}
        return {"container": "PKCS1", "encrypted": False, "algorithm": "rsaEncryption", "key_size": key.key_size}
    finally:
        _zero(der)
