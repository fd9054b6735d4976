from __future__ import annotations

import datetime as dt
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

from .common import as_utc


class SignableData(BaseModel):
    instance_id: str
    signature_field: str
    signable_data: Dict[str, Any]
    expires_at: dt.datetime
    instructions: str = ""

    @field_validator("expires_at")
    @classmethod
    def _utc(cls, v: dt.datetime) -> dt.datetime:
        return as_utc(v)

    def is_expired(self, now: dt.datetime) -> bool:
        return as_utc(now) > self.expires_at


class SignatureSubmission(BaseModel):
    signature: str
    certificate: str
    algorithm: str = Field(..., examples=["RSA-SHA256", "RSA-PSS-SHA256"])


class VerificationResult(BaseModel):
    valid: bool
    verified_at: Optional[str] = None


class SubmissionResponse(BaseModel):
    success: bool
    message: str = ""
    signature_received: bool = False
    verification_result: Optional[VerificationResult] = None


class SignatureStatus(BaseModel):
    signature_field: str
    exists: bool
    status: str
    created_at: Optional[str] = None
    expires_at: Optional[str] = None
    signed_at: Optional[str] = None
    expired: Optional[bool] = None
