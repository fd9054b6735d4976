from __future__ import annotations

import base64
import enum
import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Mapping, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from .errors import CanonicalizationError, UnsupportedAlgorithmError

if TYPE_CHECKING:
    from .certificate import Certificate
    from .keys import SigningKey

log = logging.getLogger(__name__)

PSS_SALT_LENGTH = 32


class SignatureAlgorithm(str, enum.Enum):
    RSA_SHA256 = "RSA-SHA256"
    RSA_PSS_SHA256 = "RSA-PSS-SHA256"

    @classmethod
    def parse(cls, value: Union[str, "SignatureAlgorithm"]) -> "SignatureAlgorithm":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            supported = ", ".join(a.value for a in cls)
            raise UnsupportedAlgorithmError(
                f"Unsupported signature algorithm: {value} (supported: {supported})"
            ) from None

    def hash_algorithm(self) -> hashes.HashAlgorithm:
        return hashes.SHA256()

    def rsa_padding(self) -> padding.AsymmetricPadding:
        if self is SignatureAlgorithm.RSA_PSS_SHA256:
            return padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=PSS_SALT_LENGTH)
        return padding.PKCS1v15()


@dataclass(frozen=True)
class SignatureResult:
    signature_base64: str
    certificate_pem: str
    algorithm: SignatureAlgorithm

    def to_submission(self) -> Dict[str, str]:
        return {
            "signature": self.signature_base64,
            "certificate": self.certificate_pem,
            "algorithm": self.algorithm.value,
        }


def canonicalize(signable_data: Mapping[str, Any]) -> bytes:
    """
    Compact JSON with sorted keys, UTF-8 encoded.

    The verifying service rebuilds these exact bytes from the same structured
    data with `json.dumps(data, sort_keys=True, separators=(",", ":"),
    ensure_ascii=False)`. Both sides must change together.
    """
    try:
        text = json.dumps(
            signable_data,
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
            allow_nan=False,
        )
    except (TypeError, ValueError) as exc:
        raise CanonicalizationError(f"Signable data cannot be serialized canonically: {exc}") from exc
    return text.encode("utf-8")


def sign_signable_data(
    signable_data: Mapping[str, Any],
    key: "SigningKey",
    certificate: "Certificate",
    algorithm: Union[str, SignatureAlgorithm] = SignatureAlgorithm.RSA_SHA256,
) -> SignatureResult:
    from .certificate import certificate_to_pem

    algo = SignatureAlgorithm.parse(algorithm)
    payload = canonicalize(signable_data)
    signature = key.sign(payload, algo)
    log.info("Signed %d canonical bytes with %s", len(payload), algo.value)
    return SignatureResult(
        signature_base64=base64.b64encode(signature).decode("ascii"),
        certificate_pem=certificate_to_pem(certificate),
        algorithm=algo,
    )


def verify_signature(result: SignatureResult, signable_data: Mapping[str, Any]) -> bool:
    """Check `result` against the public key of its own certificate."""
    from .certificate import parse_certificate

    cert = parse_certificate(result.certificate_pem)
    public_key = cert.public_key
    if not isinstance(public_key, rsa.RSAPublicKey):
        return False
    try:
        public_key.verify(
            base64.b64decode(result.signature_base64),
            canonicalize(signable_data),
            result.algorithm.rsa_padding(),
            result.algorithm.hash_algorithm(),
        )
    except InvalidSignature:
        return False
    return True
