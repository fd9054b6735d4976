from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar, Union

from .certificate import Certificate, parse_certificate
from .common import Clock, iso_utc, utc_now
from .contracts import SignableData, SignatureStatus, SignatureSubmission, SubmissionResponse
from .document_service import DocumentService
from .errors import (
    CertificateInvalidError,
    CertificateKeyMismatchError,
    CertSignError,
    NetworkError,
    SignableDataExpiredError,
    SubmissionRejectedError,
    WorkflowStateError,
)
from .keys import KeyInput, SigningKey, import_private_key
from .settings import Settings
from .signer import SignatureAlgorithm, sign_signable_data
from .validation import ValidationPolicy, ValidationVerdict, validate_certificate

log = logging.getLogger(__name__)

T = TypeVar("T")


class WorkflowState(str, enum.Enum):
    AWAITING_CERTIFICATE = "awaiting_certificate"
    AWAITING_DATA = "awaiting_data"
    SIGNING = "signing"
    COMPLETE = "complete"
    FAILED = "failed"


TERMINAL_STATES = frozenset({WorkflowState.COMPLETE, WorkflowState.FAILED})


class OutcomeStatus(str, enum.Enum):
    VERIFIED = "verified"
    STORED = "stored"
    STORED_UNVERIFIED = "stored_unverified"
    REJECTED = "rejected"


@dataclass(frozen=True)
class SigningOutcome:
    status: OutcomeStatus
    message: str
    response: Optional[SubmissionResponse] = None

    @staticmethod
    def from_response(response: SubmissionResponse) -> "SigningOutcome":
        if not response.success:
            return SigningOutcome(OutcomeStatus.REJECTED, response.message or "Signature rejected", response)
        vr = response.verification_result
        if vr is None:
            return SigningOutcome(OutcomeStatus.STORED, response.message or "Signature stored", response)
        if vr.valid:
            return SigningOutcome(OutcomeStatus.VERIFIED, response.message or "Signature verified", response)
        return SigningOutcome(
            OutcomeStatus.STORED_UNVERIFIED,
            "Signature stored but automatic verification failed",
            response,
        )


@dataclass(frozen=True)
class WorkflowEvent:
    previous: WorkflowState
    current: WorkflowState
    error: Optional[str] = None


@dataclass(frozen=True)
class WorkflowSnapshot:
    state: WorkflowState
    certificate: Optional[Dict[str, Any]]
    verdict: Optional[ValidationVerdict]
    key_loaded: bool
    signable_data: Optional[SignableData]
    outcome: Optional[SigningOutcome]
    last_error: Optional[str]


Listener = Callable[[WorkflowEvent], None]


class SigningWorkflow:
    """
    One signing session for `(instance_id, signature_field)`.

    AWAITING_CERTIFICATE -> AWAITING_DATA -> SIGNING -> COMPLETE, with
    FAILED as the terminal state for an invalid certificate, expired signable
    data or an abandoned session. Sign and network failures during
    `confirm()` fall back to AWAITING_DATA so the user can retry without
    reloading files. The signing key is discarded on COMPLETE and FAILED.
    """

    def __init__(
        self,
        instance_id: str,
        signature_field: str,
        documents: DocumentService,
        *,
        clock: Clock = utc_now,
        policy: Optional[ValidationPolicy] = None,
        algorithm: Union[str, SignatureAlgorithm, None] = None,
        assume_digital_signature: bool = True,
    ):
        self.instance_id = instance_id
        self.signature_field = signature_field
        self._documents = documents
        self._clock = clock
        self._policy = policy or ValidationPolicy()
        self._algorithm = SignatureAlgorithm.parse(algorithm) if algorithm is not None else None
        self._assume_digital_signature = assume_digital_signature

        self._state = WorkflowState.AWAITING_CERTIFICATE
        self._certificate: Optional[Certificate] = None
        self._certificate_info: Optional[Dict[str, Any]] = None
        self._verdict: Optional[ValidationVerdict] = None
        self._key: Optional[SigningKey] = None
        self._signable: Optional[SignableData] = None
        self._outcome: Optional[SigningOutcome] = None
        self._last_error: Optional[str] = None
        self._inflight: Optional[asyncio.Future] = None
        self._listeners: List[Listener] = []

    @classmethod
    def from_settings(
        cls, instance_id: str, signature_field: str, documents: DocumentService, settings: Settings, **kwargs
    ) -> "SigningWorkflow":
        kwargs.setdefault("policy", ValidationPolicy.from_settings(settings))
        kwargs.setdefault("algorithm", settings.SIGNATURE_ALGORITHM)
        kwargs.setdefault("assume_digital_signature", settings.ASSUME_DIGITAL_SIGNATURE)
        return cls(instance_id, signature_field, documents, **kwargs)

    # -- observation -----------------------------------------------------

    @property
    def state(self) -> WorkflowState:
        return self._state

    @property
    def verdict(self) -> Optional[ValidationVerdict]:
        return self._verdict

    @property
    def signable_data(self) -> Optional[SignableData]:
        return self._signable

    @property
    def outcome(self) -> Optional[SigningOutcome]:
        return self._outcome

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    def snapshot(self) -> WorkflowSnapshot:
        return WorkflowSnapshot(
            state=self._state,
            certificate=self._certificate_info,
            verdict=self._verdict,
            key_loaded=self._key is not None,
            signable_data=self._signable,
            outcome=self._outcome,
            last_error=self._last_error,
        )

    # -- transitions -----------------------------------------------------

    def _transition(self, new: WorkflowState, error: Optional[str] = None) -> None:
        previous, self._state = self._state, new
        self._last_error = error
        log.info("Signing workflow %s/%s: %s -> %s", self.instance_id, self.signature_field, previous.value, new.value)
        if new in TERMINAL_STATES:
            self._discard_secrets()
        event = WorkflowEvent(previous, new, error)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                log.exception("Workflow listener failed on %s -> %s", previous.value, new.value)

    def _fail(self, exc: CertSignError) -> CertSignError:
        self._transition(WorkflowState.FAILED, str(exc))
        return exc

    def _record(self, exc: BaseException) -> None:
        self._last_error = str(exc)
        log.warning("Signing workflow %s/%s: %s", self.instance_id, self.signature_field, exc)

    def _require_state(self, *allowed: WorkflowState) -> None:
        if self._state not in allowed:
            names = ", ".join(s.value for s in allowed)
            raise WorkflowStateError(f"Operation not allowed in state {self._state.value} (expected {names})")

    def _discard_secrets(self) -> None:
        if self._key is not None:
            self._key.discard()
        self._key = None
        self._certificate = None

    async def _network(self, call: Awaitable[T]) -> T:
        task = asyncio.ensure_future(call)
        self._inflight = task
        try:
            return await task
        except asyncio.CancelledError:
            self._abandon("Signing workflow abandoned during a network call")
            raise
        finally:
            self._inflight = None

    def _abandon(self, reason: str) -> None:
        if self._state not in TERMINAL_STATES:
            self._transition(WorkflowState.FAILED, reason)
        else:
            self._discard_secrets()

    # -- steps -----------------------------------------------------------

    def load_certificate(self, data: Union[bytes, bytearray, str]) -> ValidationVerdict:
        """Parse and validate the signer certificate. An invalid verdict fails the workflow."""
        self._require_state(WorkflowState.AWAITING_CERTIFICATE)
        try:
            cert = parse_certificate(data, assume_digital_signature=self._assume_digital_signature)
        except CertSignError as exc:
            self._record(exc)
            raise

        verdict = validate_certificate(cert, now=self._clock(), policy=self._policy)
        self._certificate = cert
        self._certificate_info = cert.as_dict()
        self._verdict = verdict
        self._last_error = None
        for w in verdict.warnings:
            log.warning("Certificate %s: %s", cert.fingerprint, w)

        if not verdict.valid:
            raise self._fail(CertificateInvalidError(verdict))

        if self._key is not None and not cert.matches_public_key(self._key.public_key()):
            self._key.discard()
            self._key = None
            exc = CertificateKeyMismatchError()
            self._record(exc)
            raise exc
        return verdict

    def load_private_key(self, data: KeyInput, passphrase: Optional[str] = None) -> None:
        """Import the private key. Import errors leave the workflow where it was."""
        self._require_state(WorkflowState.AWAITING_CERTIFICATE)
        try:
            key = import_private_key(data, passphrase)
        except CertSignError as exc:
            self._record(exc)
            raise

        if self._certificate is not None and not self._certificate.matches_public_key(key.public_key()):
            key.discard()
            exc = CertificateKeyMismatchError()
            self._record(exc)
            raise exc

        if self._key is not None:
            self._key.discard()
        self._key = key
        self._last_error = None

    async def prepare(self) -> SignableData:
        """Fetch the data to sign once a valid certificate and its key are loaded."""
        self._require_state(WorkflowState.AWAITING_CERTIFICATE)
        if self._certificate is None or self._verdict is None or not self._verdict.valid:
            raise WorkflowStateError("Load a valid certificate before requesting the data to sign")
        if self._key is None:
            raise WorkflowStateError("Load the private key before requesting the data to sign")
        try:
            data = await self._network(
                self._documents.get_signable_data(self.instance_id, self.signature_field)
            )
        except NetworkError as exc:
            self._record(exc)
            raise
        self._signable = data
        self._transition(WorkflowState.AWAITING_DATA)
        return data

    async def refresh(self) -> SignableData:
        self._require_state(WorkflowState.AWAITING_DATA)
        try:
            data = await self._network(
                self._documents.get_signable_data(self.instance_id, self.signature_field)
            )
        except NetworkError as exc:
            self._record(exc)
            raise
        self._signable = data
        self._last_error = None
        return data

    async def confirm(self) -> SigningOutcome:
        """
        Sign the fetched data and submit it.

        Expired signable data fails the workflow before anything is signed or
        sent. A stored-but-unverified answer still completes the workflow.
        """
        self._require_state(WorkflowState.AWAITING_DATA)
        if self._signable is None or self._key is None or self._certificate is None:
            raise WorkflowStateError("Nothing to sign; call prepare() first")

        now = self._clock()
        if self._signable.is_expired(now):
            raise self._fail(SignableDataExpiredError(
                f"Signable data expired at {iso_utc(self._signable.expires_at)}; restart the signing session"
            ))

        self._transition(WorkflowState.SIGNING)
        algorithm = self._algorithm or self._key.algorithm
        try:
            result = sign_signable_data(self._signable.signable_data, self._key, self._certificate, algorithm)
        except Exception as exc:
            self._transition(WorkflowState.AWAITING_DATA, str(exc))
            raise

        submission = SignatureSubmission(**result.to_submission())
        try:
            response = await self._network(
                self._documents.submit_signature(self.instance_id, self.signature_field, submission)
            )
        except NetworkError as exc:
            self._transition(WorkflowState.AWAITING_DATA, str(exc))
            raise
        except SubmissionRejectedError as exc:
            self._outcome = SigningOutcome(OutcomeStatus.REJECTED, str(exc))
            self._transition(WorkflowState.COMPLETE, str(exc))
            raise
        except Exception as exc:
            log.exception("Unexpected error submitting %s/%s", self.instance_id, self.signature_field)
            self._transition(WorkflowState.AWAITING_DATA, str(exc))
            raise

        outcome = SigningOutcome.from_response(response)
        self._outcome = outcome
        if outcome.status is OutcomeStatus.REJECTED:
            self._transition(WorkflowState.COMPLETE, outcome.message)
            raise SubmissionRejectedError(outcome.message)
        self._transition(WorkflowState.COMPLETE)
        return outcome

    async def signature_status(self) -> SignatureStatus:
        return await self._network(
            self._documents.get_signature_status(self.instance_id, self.signature_field)
        )

    def abandon(self) -> None:
        """Cancel any in-flight request and discard the key. Safe to call repeatedly."""
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()
        self._abandon("Signing workflow abandoned")

    async def __aenter__(self) -> "SigningWorkflow":
        return self

    async def __aexit__(self, *exc_info) -> None:
        if self._state not in TERMINAL_STATES:
            self.abandon()
