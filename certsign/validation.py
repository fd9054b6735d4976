from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional, Tuple

from .certificate import DIGITAL_SIGNATURE, Certificate
from .common import as_utc, utc_now, whole_days_between
from .errors import CertificateInvalidError
from .settings import Settings

MSG_NOT_YET_VALID = "Certificate is not yet valid"
MSG_EXPIRED = "Certificate has expired"
MSG_NO_DIGITAL_SIGNATURE = "Certificate may not be suitable for digital signatures"


@dataclass(frozen=True)
class ValidationPolicy:
    expiry_warning_days: int = 30
    min_rsa_key_size: int = 2048
    weak_signature_hashes: FrozenSet[str] = field(default_factory=lambda: frozenset({"md5", "sha1"}))

    @staticmethod
    def from_settings(settings: Settings) -> "ValidationPolicy":
        return ValidationPolicy(
            expiry_warning_days=settings.EXPIRY_WARNING_DAYS,
            min_rsa_key_size=settings.MIN_RSA_KEY_SIZE,
        )


@dataclass(frozen=True)
class ValidationVerdict:
    errors: Tuple[str, ...] = ()
    warnings: Tuple[str, ...] = ()

    @property
    def valid(self) -> bool:
        return not self.errors

    def as_dict(self) -> dict:
        return {"valid": self.valid, "errors": list(self.errors), "warnings": list(self.warnings)}


def validate_certificate(
    cert: Certificate,
    now: Optional[dt.datetime] = None,
    policy: Optional[ValidationPolicy] = None,
) -> ValidationVerdict:
    """Judge a certificate fit for signing at `now`. No I/O; every rule runs."""
    now = as_utc(now) if now is not None else utc_now()
    policy = policy or ValidationPolicy()
    errors: List[str] = []
    warnings: List[str] = []

    if now < cert.not_before:
        errors.append(MSG_NOT_YET_VALID)
    if now > cert.not_after:
        errors.append(MSG_EXPIRED)
    elif cert.not_after - now < dt.timedelta(days=policy.expiry_warning_days):
        days = whole_days_between(now, cert.not_after)
        warnings.append(f"Certificate expires in {days} days")

    if DIGITAL_SIGNATURE not in cert.key_usage:
        warnings.append(MSG_NO_DIGITAL_SIGNATURE)

    pk = cert.public_key_info
    if pk.get("type") == "RSA" and int(pk.get("size", 0)) < policy.min_rsa_key_size:
        warnings.append(f"RSA key size {pk['size']} is below {policy.min_rsa_key_size} bits")

    sig = (cert.signature_hash or "").lower()
    if sig in policy.weak_signature_hashes:
        warnings.append(f"Certificate is signed with a weak hash: {sig}")

    return ValidationVerdict(errors=tuple(errors), warnings=tuple(warnings))


def require_valid(verdict: ValidationVerdict) -> ValidationVerdict:
    if not verdict.valid:
        raise CertificateInvalidError(verdict)
    return verdict
