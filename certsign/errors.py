from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional, Tuple

if TYPE_CHECKING:
    from .validation import ValidationVerdict


class CertSignError(Exception):
    """Base class. `retryable` tells the caller whether the same step may be tried again."""

    retryable = False


class MalformedCertificateError(CertSignError):
    pass


class CertificateInvalidError(CertSignError):
    def __init__(self, verdict: "ValidationVerdict"):
        self.verdict = verdict
        detail = ", ".join(verdict.errors) or "validation failed"
        super().__init__(f"Invalid certificate: {detail}")


class CertificateKeyMismatchError(CertSignError):
    def __init__(self) -> None:
        super().__init__("The private key does not belong to the loaded certificate")


class UnsupportedKeyFormatError(CertSignError):
    def __init__(self, attempts: List[Tuple[str, str]]):
        self.attempts = list(attempts)
        tried = "; ".join(f"{label}: {reason}" for label, reason in self.attempts)
        super().__init__(f"Unsupported private key format ({tried or 'no candidate matched'})")


class PassphraseRequiredError(CertSignError):
    def __init__(self) -> None:
        super().__init__("The private key is encrypted; a passphrase is required")


class IncorrectPassphraseError(CertSignError):
    def __init__(self) -> None:
        super().__init__("The passphrase does not unlock the private key")


class UnsupportedAlgorithmError(CertSignError):
    pass


class CanonicalizationError(CertSignError):
    pass


class SignableDataExpiredError(CertSignError):
    pass


class NetworkError(CertSignError):
    def __init__(self, message: str, *, retryable: bool = True, status_code: Optional[int] = None):
        super().__init__(message)
        self.retryable = retryable
        self.status_code = status_code


class SubmissionRejectedError(CertSignError):
    def __init__(self, message: str, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class WorkflowStateError(CertSignError):
    pass
