"""SigV4 request authentication: Authorization header and presigned URLs.

sign_v4() and presign_v4() are pure functions of the request, the
credential snapshot, the scope and the clock value. Signer binds them to
a credentials cache, a default region and a signing-key cache, and adds
aws-chunked streaming uploads on top.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Callable, Optional, Union

import httpx

from rustfs_sdk.canonical import (
    ALGORITHM,
    STREAMING_PAYLOAD,
    UNSIGNED_PAYLOAD,
    HeaderFilter,
    canonical_query,
    canonical_request,
    canonical_uri,
    credential_scope,
    default_signable,
    format_timestamp,
    hash_payload,
    presign_signable,
    query_pairs,
    select_headers,
    signed_header_names,
    split_url,
    string_to_sign,
)
from rustfs_sdk.errors import (
    HashFailure,
    InvalidExpiry,
    InvalidRequest,
    MissingCredentials,
    MissingRegion,
)
from rustfs_sdk.models import Credential, PayloadMode
from rustfs_sdk.signing_key import SigningKeyCache, derive_signing_key, sign_string
from rustfs_sdk.streaming import (
    CHUNK_SIZE,
    ChunkSigner,
    PlainPayload,
    StreamingPayload,
    prepare_streaming_request,
)

if TYPE_CHECKING:
    from rustfs_sdk.credentials import Credentials
    from rustfs_sdk.post_policy import PostPolicy

logger = logging.getLogger(__name__)

SERVICE_S3 = "s3"
SERVICE_STS = "sts"

# STS is global; AWS routes unscoped calls through us-east-1
DEFAULT_STS_REGION = "us-east-1"

MIN_PRESIGN_EXPIRY = 1
MAX_PRESIGN_EXPIRY = 7 * 24 * 60 * 60


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SignResult:
    """Outcome of signing a request.

    For an anonymous credential the request is returned untouched and
    signature is None.
    """

    request: httpx.Request
    signature: Optional[str] = None
    timestamp: Optional[str] = None
    scope: Optional[str] = None
    signed_headers: Optional[str] = None
    signing_key: Optional[bytes] = field(default=None, repr=False)

    @property
    def signed(self) -> bool:
        return self.signature is not None


def resolve_region(region: Optional[str], service: str) -> str:
    """Pick the signing region, defaulting only for STS."""
    if region:
        return region
    if service == SERVICE_STS:
        return DEFAULT_STS_REGION
    raise MissingRegion(f"A region is required to sign {service} requests")


def _check_credential(credential: Credential) -> None:
    if not credential.access_key_id or not credential.secret_access_key:
        raise MissingCredentials("Access key and secret key are required for SigV4")


def _expiry_seconds(expires_in: Union[int, float, timedelta]) -> int:
    if isinstance(expires_in, timedelta):
        seconds = expires_in.total_seconds()
    else:
        seconds = expires_in
    if not MIN_PRESIGN_EXPIRY <= seconds <= MAX_PRESIGN_EXPIRY:
        raise InvalidExpiry(seconds)
    return int(seconds)


def _signing_key(
    credential: Credential,
    date: str,
    region: str,
    service: str,
    key_cache: Optional[SigningKeyCache],
) -> bytes:
    if key_cache is not None:
        return key_cache.get(credential.secret_access_key, date, region, service)
    return derive_signing_key(credential.secret_access_key, date, region, service)


def _payload_hash(request: httpx.Request, payload: PayloadMode) -> str:
    if "x-amz-content-sha256" in request.headers:
        return request.headers["x-amz-content-sha256"]

    if payload is PayloadMode.UNSIGNED:
        return UNSIGNED_PAYLOAD

    if payload is PayloadMode.STREAMING:
        if "x-amz-decoded-content-length" not in request.headers:
            raise InvalidRequest(
                "Streaming requests need x-amz-decoded-content-length; "
                "call prepare_streaming_request first"
            )
        return STREAMING_PAYLOAD

    try:
        body = request.read()
    except OSError as e:
        raise HashFailure(f"Failed to read request body: {e}") from e
    return hash_payload(body)


def sign_v4(
    request: httpx.Request,
    credential: Credential,
    region: Optional[str],
    service: str = SERVICE_S3,
    now: Optional[datetime] = None,
    payload: PayloadMode = PayloadMode.UNSIGNED,
    include: HeaderFilter = default_signable,
    key_cache: Optional[SigningKeyCache] = None,
) -> SignResult:
    """Sign a request in place with an Authorization header.

    Args:
        request: Request to sign. Its headers are modified.
        credential: Credential snapshot; anonymous snapshots skip signing.
        region: Signing region. Required for S3; STS falls back to us-east-1.
        service: Service name in the credential scope ("s3" or "sts").
        now: Signing time, defaults to the current UTC time.
        payload: Which payload hash to use when the request does not
                 already carry x-amz-content-sha256.
        include: Signing policy deciding which headers participate.
        key_cache: Optional cache for derived signing keys.

    Returns:
        SignResult with the signature, which seeds streaming uploads.

    Raises:
        MissingCredentials: If the snapshot lacks keys.
        MissingRegion: If no region is given for an S3 request.
        InvalidRequest: If the URL has no host.
        HashFailure: If the body cannot be read for a signed payload.
    """
    if credential.is_anonymous:
        return SignResult(request=request)

    _check_credential(credential)
    region = resolve_region(region, service)
    if now is None:
        now = utcnow()

    timestamp = format_timestamp(now)
    date = timestamp[:8]

    if "authorization" in request.headers:
        del request.headers["authorization"]
    request.headers["x-amz-date"] = timestamp
    if credential.session_token:
        request.headers["x-amz-security-token"] = credential.session_token

    payload_hash = _payload_hash(request, payload)
    if service == SERVICE_S3 or payload is PayloadMode.STREAMING:
        request.headers["x-amz-content-sha256"] = payload_hash

    canonical, signed_headers = canonical_request(
        request.method, request.url, request.headers, payload_hash, include
    )
    scope = credential_scope(date, region, service)
    to_sign = string_to_sign(timestamp, scope, canonical)
    logger.debug("CanonicalRequest:\n%s", canonical)
    logger.debug("StringToSign:\n%s", to_sign)

    signing_key = _signing_key(credential, date, region, service, key_cache)
    signature = sign_string(signing_key, to_sign)

    request.headers["authorization"] = (
        f"{ALGORITHM} Credential={credential.access_key_id}/{scope}, "
        f"SignedHeaders={signed_headers}, Signature={signature}"
    )

    return SignResult(
        request=request,
        signature=signature,
        timestamp=timestamp,
        scope=scope,
        signed_headers=signed_headers,
        signing_key=signing_key,
    )


def presign_v4(
    request: httpx.Request,
    credential: Credential,
    region: Optional[str],
    expires_in: Union[int, float, timedelta],
    service: str = SERVICE_S3,
    now: Optional[datetime] = None,
    key_cache: Optional[SigningKeyCache] = None,
    include: HeaderFilter = presign_signable,
) -> str:
    """Build a presigned URL carrying the signature in its query string.

    By default only host and the x-amz-* headers set on the request are signed;
    whoever uses the URL must send those same x-amz-* headers. The payload
    is always UNSIGNED-PAYLOAD.

    Args:
        request: Request describing the method, URL and signed headers.
        credential: Credential snapshot; anonymous snapshots return the URL
                    unchanged.
        region: Signing region.
        expires_in: Validity window, 1 second to 7 days.
        service: Service name in the credential scope.
        now: Signing time, defaults to the current UTC time.
        key_cache: Optional cache for derived signing keys.
        include: Header signing policy, host and x-amz-* by default.

    Returns:
        The presigned URL.

    Raises:
        InvalidExpiry: If expires_in is outside [1s, 7d].
    """
    expires = _expiry_seconds(expires_in)
    if credential.is_anonymous:
        return str(request.url)

    _check_credential(credential)
    region = resolve_region(region, service)
    if now is None:
        now = utcnow()

    timestamp = format_timestamp(now)
    date = timestamp[:8]
    scope = credential_scope(date, region, service)

    parts = split_url(request.url)
    selected = select_headers(request.headers, parts, include)
    signed_headers = signed_header_names(selected)

    pairs = [
        (key, value)
        for key, value in query_pairs(parts.query)
        if key != "X-Amz-Signature"
    ]
    pairs.extend([
        ("X-Amz-Algorithm", ALGORITHM),
        ("X-Amz-Credential", f"{credential.access_key_id}/{scope}"),
        ("X-Amz-Date", timestamp),
        ("X-Amz-Expires", str(expires)),
        ("X-Amz-SignedHeaders", signed_headers),
    ])
    if credential.session_token:
        pairs.append(("X-Amz-Security-Token", credential.session_token))

    canonical, _ = canonical_request(
        request.method,
        request.url,
        request.headers,
        UNSIGNED_PAYLOAD,
        include,
        query=pairs,
    )
    to_sign = string_to_sign(timestamp, scope, canonical)
    logger.debug("CanonicalRequest:\n%s", canonical)

    signing_key = _signing_key(credential, date, region, service, key_cache)
    signature = sign_string(signing_key, to_sign)

    return (
        f"{parts.scheme}://{parts.netloc}{canonical_uri(parts.path)}"
        f"?{canonical_query(pairs)}&X-Amz-Signature={signature}"
    )


def post_presign_signature_v4(
    policy_b64: str,
    now: datetime,
    secret_access_key: str,
    region: str,
    service: str = SERVICE_S3,
) -> str:
    """Sign a base64 POST policy document.

    The string to sign is the base64 policy itself, signed with the
    scoped key for the date of `now`.
    """
    date = format_timestamp(now)[:8]
    signing_key = derive_signing_key(secret_access_key, date, region, service)
    return sign_string(signing_key, policy_b64)


def post_policy_credential(
    access_key_id: str, now: datetime, region: str, service: str = SERVICE_S3
) -> str:
    """x-amz-credential value: <access key>/<date>/<region>/<service>/aws4_request."""
    date = format_timestamp(now)[:8]
    return f"{access_key_id}/{credential_scope(date, region, service)}"


class Signer:
    """Authenticator bound to a credentials cache and a default region.

    Each call takes a fresh snapshot from the credentials cache, so
    refreshed STS credentials are picked up without rebuilding the signer.
    """

    def __init__(
        self,
        credentials: Union["Credentials", Credential],
        region: Optional[str] = None,
        service: str = SERVICE_S3,
        clock: Callable[[], datetime] = utcnow,
        include: HeaderFilter = default_signable,
    ):
        """Initialize the signer.

        Args:
            credentials: A Credentials cache (anything with get()) or a
                         Credential snapshot.
            region: Default signing region.
            service: Service name in the credential scope.
            clock: Returns the signing time; injectable for tests.
            include: Header signing policy for sign().
        """
        self.credentials = credentials
        self.region = region
        self.service = service
        self.clock = clock
        self.include = include
        self.key_cache = SigningKeyCache()

    def _credential(self) -> Credential:
        if isinstance(self.credentials, Credential):
            return self.credentials
        return self.credentials.get()

    def sign(
        self,
        request: httpx.Request,
        payload: PayloadMode = PayloadMode.UNSIGNED,
        region: Optional[str] = None,
    ) -> SignResult:
        """Sign a request with an Authorization header."""
        return sign_v4(
            request,
            self._credential(),
            region or self.region,
            service=self.service,
            now=self.clock(),
            payload=payload,
            include=self.include,
            key_cache=self.key_cache,
        )

    def presign(
        self,
        request: httpx.Request,
        expires_in: Union[int, float, timedelta],
        region: Optional[str] = None,
        include: HeaderFilter = presign_signable,
    ) -> str:
        """Return a presigned URL for the request."""
        return presign_v4(
            request,
            self._credential(),
            region or self.region,
            expires_in,
            service=self.service,
            now=self.clock(),
            key_cache=self.key_cache,
            include=include,
        )

    def post_policy_form(
        self, policy: "PostPolicy", region: Optional[str] = None
    ) -> dict[str, str]:
        """Sign a POST policy and return its form fields."""
        return policy.form_data(
            self._credential(),
            resolve_region(region or self.region, self.service),
            self.clock(),
        )

    def sign_streaming(
        self,
        request: httpx.Request,
        body: Any,
        length: int,
        region: Optional[str] = None,
        chunk_size: int = CHUNK_SIZE,
        cancel_event: Optional[threading.Event] = None,
    ) -> SignResult:
        """Sign a request for an aws-chunked upload of `body`.

        The passed request supplies the method, URL and headers; its
        headers are updated and signed. The returned SignResult holds a new
        request whose body is the lazily signed chunk stream. Anonymous
        credentials get the plain body instead.

        Args:
            request: Request to sign, without a body.
            body: bytes or a binary file object holding exactly `length` bytes.
            length: Decoded body length.
            region: Signing region override.
            chunk_size: Bytes per chunk.
            cancel_event: When set, the upload aborts at the next chunk.

        Returns:
            SignResult whose request streams the body.
        """
        credential = self._credential()
        if credential.is_anonymous:
            request.headers["content-length"] = str(length)
            return SignResult(
                request=_with_stream(request, PlainPayload(body, length, chunk_size))
            )

        prepare_streaming_request(request, length, chunk_size)
        result = sign_v4(
            request,
            credential,
            region or self.region,
            service=self.service,
            now=self.clock(),
            payload=PayloadMode.STREAMING,
            include=self.include,
            key_cache=self.key_cache,
        )
        chain = ChunkSigner(
            result.signing_key, result.timestamp, result.scope, result.signature
        )
        payload = StreamingPayload(
            body, length, chain, chunk_size=chunk_size, cancel_event=cancel_event
        )
        result.request = _with_stream(request, payload)
        return result


def _with_stream(request: httpx.Request, stream: httpx.SyncByteStream) -> httpx.Request:
    return httpx.Request(
        request.method,
        request.url,
        headers=request.headers,
        stream=stream,
        extensions=request.extensions,
    )
