"""Browser-based uploads with a SigV4-signed POST policy.

A POST policy is a JSON document listing what an HTML form upload may
contain. It is base64-encoded and signed with the scoped SigV4 key; the
server checks the form against it. The conditions added here are only
written into the document, never evaluated locally.
"""

import base64
import json
from datetime import datetime, timezone
from typing import Any, Optional

from rustfs_sdk.canonical import ALGORITHM, format_timestamp
from rustfs_sdk.errors import InvalidRequest, MissingCredentials
from rustfs_sdk.models import Credential
from rustfs_sdk.signer import post_policy_credential, post_presign_signature_v4

# Form fields the signer fills in itself
RESERVED_FIELDS = (
    "policy",
    "x-amz-algorithm",
    "x-amz-credential",
    "x-amz-date",
    "x-amz-signature",
    "x-amz-security-token",
)


def format_policy_expiration(expiration: datetime) -> str:
    """Policy expiration in UTC with millisecond precision."""
    expiration = expiration.astimezone(timezone.utc)
    return expiration.strftime("%Y-%m-%dT%H:%M:%S.") + f"{expiration.microsecond // 1000:03d}Z"


class PostPolicy:
    """Conditions for a POST upload to one bucket.

    Example:
        >>> policy = PostPolicy("photos", datetime.now(timezone.utc) + timedelta(hours=1))
        >>> policy.add_starts_with_condition("key", "user/alice/")
        >>> policy.add_content_length_range_condition(1, 10 * 1024 * 1024)
        >>> url, fields = client.presigned_post_policy(policy)
    """

    def __init__(self, bucket: str, expiration: datetime):
        if not bucket:
            raise InvalidRequest("Bucket name is required")
        if expiration.tzinfo is None:
            raise InvalidRequest("Policy expiration must be timezone-aware")
        self.bucket = bucket
        self.expiration = expiration
        self._equals: dict[str, str] = {}
        self._starts_with: dict[str, str] = {}
        self._content_length: Optional[tuple[int, int]] = None

    @staticmethod
    def _element(element: str) -> str:
        name = element[1:] if element.startswith("$") else element
        if not name:
            raise InvalidRequest("Condition element must not be empty")
        if name.lower() in RESERVED_FIELDS or name.lower() == "bucket":
            raise InvalidRequest(f"{name} is set by the signer")
        return name

    def add_equals_condition(self, element: str, value: str) -> None:
        """Require form field `element` to equal `value`."""
        self._equals[self._element(element)] = value

    def add_starts_with_condition(self, element: str, prefix: str) -> None:
        """Require form field `element` to start with `prefix` ("" allows anything)."""
        self._starts_with[self._element(element)] = prefix

    def add_content_length_range_condition(self, lower: int, upper: int) -> None:
        """Bound the uploaded object size, inclusive."""
        if lower < 0 or upper < lower:
            raise InvalidRequest(f"Invalid content length range {lower}-{upper}")
        self._content_length = (lower, upper)

    def document(self, signer_fields: dict[str, str]) -> dict[str, Any]:
        """The policy document, with the signer's own fields as equality conditions."""
        conditions: list[Any] = [{"bucket": self.bucket}]
        for name, value in self._equals.items():
            conditions.append(["eq", f"${name}", value])
        for name, prefix in self._starts_with.items():
            conditions.append(["starts-with", f"${name}", prefix])
        if self._content_length is not None:
            conditions.append(["content-length-range", *self._content_length])
        for name, value in signer_fields.items():
            conditions.append({name: value})

        return {
            "expiration": format_policy_expiration(self.expiration),
            "conditions": conditions,
        }

    def form_data(
        self,
        credential: Credential,
        region: str,
        now: datetime,
    ) -> dict[str, str]:
        """Encode and sign the policy, returning the form fields to post.

        Equality conditions are included as fields so the form can use them
        as they are.

        Raises:
            MissingCredentials: If the snapshot is anonymous or lacks keys.
        """
        if credential.is_anonymous:
            raise MissingCredentials("Anonymous credentials cannot sign a POST policy")
        if not credential.access_key_id or not credential.secret_access_key:
            raise MissingCredentials("Access key and secret key are required for SigV4")

        signer_fields = {
            "x-amz-algorithm": ALGORITHM,
            "x-amz-credential": post_policy_credential(credential.access_key_id, now, region),
            "x-amz-date": format_timestamp(now),
        }
        if credential.session_token:
            signer_fields["x-amz-security-token"] = credential.session_token

        document = json.dumps(self.document(signer_fields), separators=(",", ":"))
        policy_b64 = base64.b64encode(document.encode("utf-8")).decode("ascii")

        fields = dict(self._equals)
        fields.update(signer_fields)
        fields["policy"] = policy_b64
        fields["x-amz-signature"] = post_presign_signature_v4(
            policy_b64, now, credential.secret_access_key, region
        )
        return fields
