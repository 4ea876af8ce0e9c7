"""Temporary credentials from an STS AssumeRole call.

The request is the standard STS query-form protocol: a form-encoded POST
to the endpoint root, signed with SigV4 for service "sts" using the
caller's long-lived keys.
"""

import hashlib
import logging
import re
import xml.etree.ElementTree as ET
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from urllib.parse import urlencode, urlsplit, urlunsplit

import httpx

from rustfs_sdk.credentials.base import (
    DEFAULT_EXPIRY_WINDOW,
    Credentials,
    Expiry,
    Provider,
    utcnow,
)
from rustfs_sdk.errors import (
    InvalidRequest,
    MissingCredentials,
    STSFailure,
    STSParseFailure,
)
from rustfs_sdk.models import AssumeRoleOptions, Credential, PayloadMode
from rustfs_sdk.signer import DEFAULT_STS_REGION, SERVICE_STS, sign_v4
from rustfs_sdk.xmlutil import error_fields, find_text, parse_document

logger = logging.getLogger(__name__)

STS_VERSION = "2011-06-15"

# Requests for shorter sessions are raised to this
MIN_DURATION_SECONDS = 3600

DEFAULT_TIMEOUT = 30.0

_FRACTION = re.compile(r"\.(\d+)")


def parse_expiration(value: str) -> datetime:
    """Parse an RFC 3339 Expiration such as 2025-01-01T00:10:00Z.

    Fractional seconds are cut to microseconds, so nanosecond timestamps
    parse too. The result is in UTC.

    Raises:
        ValueError: If the value is malformed or has no UTC offset.
    """
    text = value.strip()
    if text[-1:] in ("Z", "z"):
        text = text[:-1] + "+00:00"
    text = _FRACTION.sub(lambda m: "." + (m.group(1) + "000000")[:6], text, count=1)

    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        raise ValueError(f"Expiration has no UTC offset: {value!r}")
    return parsed.astimezone(timezone.utc)


def sts_url(endpoint: str) -> str:
    """Normalize an STS endpoint: the path is always "/", the query dropped."""
    parts = urlsplit(endpoint)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise InvalidRequest(f"Invalid STS endpoint: {endpoint}")
    return urlunsplit((parts.scheme, parts.netloc, "/", "", ""))


def build_form(options: AssumeRoleOptions) -> list[tuple[str, str]]:
    """AssumeRole form fields, in the order they are sent."""
    fields = [
        ("Action", "AssumeRole"),
        ("Version", STS_VERSION),
    ]
    if options.role_arn:
        fields.append(("RoleArn", options.role_arn))
    if options.role_session_name:
        fields.append(("RoleSessionName", options.role_session_name))
    fields.append(
        ("DurationSeconds", str(max(options.duration_seconds, MIN_DURATION_SECONDS)))
    )
    if options.policy:
        fields.append(("Policy", options.policy))
    if options.external_id:
        fields.append(("ExternalId", options.external_id))
    if options.token_revoke_type:
        fields.append(("TokenRevokeType", options.token_revoke_type))
    return fields


def parse_assume_role_response(content: bytes) -> Credential:
    """Extract the session credentials from a successful AssumeRole response.

    Raises:
        STSParseFailure: If the body is not an AssumeRoleResponse with a
                         complete Credentials element.
    """
    try:
        root = parse_document(content)
    except ET.ParseError as e:
        raise STSParseFailure(f"Invalid XML in AssumeRole response: {e}") from e

    if root.tag != "AssumeRoleResponse":
        raise STSParseFailure(f"Unexpected STS response element: {root.tag}")

    node = root.find("AssumeRoleResult/Credentials")
    if node is None:
        raise STSParseFailure("AssumeRole response has no Credentials element")

    access_key = find_text(node, "AccessKeyId")
    secret_key = find_text(node, "SecretAccessKey")
    session_token = find_text(node, "SessionToken")
    expiration = find_text(node, "Expiration")
    if not access_key or not secret_key or not expiration:
        raise STSParseFailure("AssumeRole response has incomplete Credentials")

    try:
        expires_at = parse_expiration(expiration)
    except ValueError as e:
        raise STSParseFailure(f"Invalid Expiration {expiration!r}") from e

    return Credential(
        access_key_id=access_key,
        secret_access_key=secret_key,
        session_token=session_token,
        expiration=expires_at,
    )


def parse_sts_error(response: httpx.Response) -> STSFailure:
    """Build an STSFailure from an error response.

    Servers answer with either an STS ErrorResponse or an S3-style Error
    document; both are understood.

    Raises:
        STSParseFailure: If the body is not XML.
    """
    try:
        root = parse_document(response.content)
    except ET.ParseError as e:
        raise STSParseFailure(
            f"Invalid XML in STS error response (HTTP {response.status_code}): {e}"
        ) from e

    fields = error_fields(root)
    if fields is None:
        return STSFailure(
            str(response.status_code),
            response.reason_phrase or "Unexpected STS error response",
            status_code=response.status_code,
        )

    return STSFailure(
        fields["code"] or str(response.status_code),
        fields["message"] or "",
        request_id=fields["request_id"],
        status_code=response.status_code,
    )


class AssumeRoleProvider(Provider):
    """Provider exchanging long-lived keys for STS session credentials."""

    def __init__(
        self,
        endpoint: str,
        options: AssumeRoleOptions,
        http_client: Optional[httpx.Client] = None,
        timeout: float = DEFAULT_TIMEOUT,
        clock: Callable[[], datetime] = utcnow,
        expiry_window: timedelta = DEFAULT_EXPIRY_WINDOW,
    ):
        """Initialize the provider.

        Args:
            endpoint: STS endpoint URL; its path is replaced with "/".
            options: AssumeRole inputs and the caller's long-lived keys.
            http_client: Client to send with. A short-lived client is
                         created per call when omitted.
            timeout: Timeout for the created client, in seconds.
            clock: Current-time source for signing and expiry checks.
            expiry_window: Headroom before Expiration.
        """
        self.url = sts_url(endpoint)
        self.options = options
        self.http_client = http_client
        self.timeout = timeout
        self.clock = clock
        self.expiry_window = expiry_window
        self.expiry = Expiry(clock)

    def build_request(self) -> httpx.Request:
        """Build and sign the AssumeRole POST."""
        options = self.options
        if not options.access_key or not options.secret_key:
            raise MissingCredentials("AssumeRole requires an access key and secret key")

        body = urlencode(build_form(options)).encode("utf-8")
        request = httpx.Request(
            "POST",
            self.url,
            content=body,
            headers={
                "Content-Type": "application/x-www-form-urlencoded",
                "X-Amz-Content-Sha256": hashlib.sha256(body).hexdigest(),
            },
        )

        credential = Credential(
            access_key_id=options.access_key,
            secret_access_key=options.secret_key,
            session_token=options.session_token or None,
        )
        sign_v4(
            request,
            credential,
            options.region or DEFAULT_STS_REGION,
            service=SERVICE_STS,
            now=self.clock(),
            payload=PayloadMode.SIGNED,
        )
        return request

    def _send(self, request: httpx.Request) -> httpx.Response:
        if self.http_client is not None:
            return self.http_client.send(request)
        with httpx.Client(timeout=self.timeout) as client:
            return client.send(request)

    def retrieve(self) -> Credential:
        """Call AssumeRole and return the session credentials.

        Raises:
            MissingCredentials: If the long-lived keys are missing.
            STSFailure: If STS answers with a non-200 status.
            STSParseFailure: If the response cannot be decoded.
            httpx.HTTPError: On transport failures.
        """
        request = self.build_request()
        logger.debug("Calling AssumeRole at %s", self.url)
        response = self._send(request)

        if response.status_code != 200:
            raise parse_sts_error(response)

        credential = parse_assume_role_response(response.content)
        self.expiry.set_expiration(credential.expiration, self.expiry_window)
        logger.info(
            "Assumed role %s as %s, expires %s",
            self.options.role_arn or "(default)",
            credential.access_key_id,
            credential.expiration.isoformat(),
        )
        return credential

    def is_expired(self) -> bool:
        return self.expiry.is_expired()

    def now(self) -> datetime:
        return self.clock()


def new_assume_role(
    endpoint: str,
    options: AssumeRoleOptions,
    **kwargs,
) -> Credentials:
    """Credentials refreshed through STS AssumeRole."""
    return Credentials(AssumeRoleProvider(endpoint, options, **kwargs))
