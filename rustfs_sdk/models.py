"""Data models for the RustFS SDK signer and credential providers."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class SignerKind(Enum):
    """How requests made with a credential are authenticated."""

    V4 = "v4"
    ANONYMOUS = "anonymous"


class PayloadMode(Enum):
    """Which payload hash goes into the canonical request."""

    UNSIGNED = "unsigned"
    SIGNED = "signed"
    STREAMING = "streaming"


@dataclass(frozen=True)
class Credential:
    """Immutable credential snapshot handed out by a provider."""

    access_key_id: str = ""
    secret_access_key: str = field(default="", repr=False)
    session_token: Optional[str] = field(default=None, repr=False)
    expiration: Optional[datetime] = None
    signer_kind: SignerKind = SignerKind.V4

    @classmethod
    def anonymous(cls) -> "Credential":
        """Build a snapshot that signals "do not sign"."""
        return cls(signer_kind=SignerKind.ANONYMOUS)

    @property
    def is_anonymous(self) -> bool:
        return self.signer_kind is SignerKind.ANONYMOUS

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Check the snapshot's own expiration, if it carries one."""
        if self.expiration is None:
            return False
        if now is None:
            now = datetime.now(timezone.utc)
        return now >= self.expiration


@dataclass
class ClientConfig:
    """Configuration for an S3-compatible endpoint."""

    endpoint_url: str
    region_name: str = "us-east-1"
    addressing_style: str = "path"
    timeout: float = 30.0
    max_attempts: int = 3
    retry_delays: tuple[float, ...] = (0.5, 1.0, 2.0)
    payload_mode: PayloadMode = PayloadMode.UNSIGNED
    streaming: bool = True


@dataclass
class AssumeRoleOptions:
    """Inputs for an STS AssumeRole call."""

    access_key: str
    secret_key: str = field(repr=False)
    role_arn: Optional[str] = None
    role_session_name: Optional[str] = None
    external_id: Optional[str] = None
    policy: Optional[str] = None
    session_token: Optional[str] = field(default=None, repr=False)
    duration_seconds: int = 3600
    region: Optional[str] = None
    token_revoke_type: Optional[str] = None
