"""SigV4 canonical request and string-to-sign construction.

A canonical request is six newline-separated lines:

    <METHOD>
    <canonical URI>
    <canonical query string>
    <canonical headers, one "name:value" per line, trailing newline>
    <signed header names, ";"-joined>
    <payload hash>

The string-to-sign wraps the SHA-256 of that text together with the
algorithm name, the request timestamp and the credential scope. Both are
byte-exact: two implementations given the same request and clock must
produce the same output.
"""

import functools
import hashlib
import re
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional, Union
from urllib.parse import SplitResult, parse_qsl, quote, unquote, urlsplit

import httpx

from rustfs_sdk.errors import HashFailure, InvalidRequest

ALGORITHM = "AWS4-HMAC-SHA256"
SCOPE_TERMINATOR = "aws4_request"
UNSIGNED_PAYLOAD = "UNSIGNED-PAYLOAD"
STREAMING_PAYLOAD = "STREAMING-AWS4-HMAC-SHA256-PAYLOAD"
EMPTY_SHA256 = hashlib.sha256(b"").hexdigest()

TIMESTAMP_FORMAT = "%Y%m%dT%H%M%SZ"
DATE_FORMAT = "%Y%m%d"

# Read size used when hashing seekable bodies
PAYLOAD_BUFFER = 1024 * 1024

# Only RFC 3986 unreserved characters stay literal
UNRESERVED = "-_.~"

# Never signed, even when every other header is
IGNORED_HEADERS = frozenset({
    "authorization",
    "user-agent",
    "accept-encoding",
    "expect",
    "transfer-encoding",
    "x-amzn-trace-id",
})

_DEFAULT_PORTS = {"http": 80, "https": 443}

# ASCII whitespace only; str.split() would also match Unicode spaces
_WHITESPACE_RUN = re.compile(r"[ \t\r\n\f\v]+")

HeaderFilter = Callable[[str], bool]
HeadersLike = Union[httpx.Headers, dict, list, None]


def default_signable(name: str) -> bool:
    """Header signing policy: host, content-type and every x-amz-* header."""
    return name in ("host", "content-type") or name.startswith("x-amz-")


def presign_signable(name: str) -> bool:
    """Presign policy: host plus any x-amz-* header the caller set."""
    return name == "host" or name.startswith("x-amz-")


def all_signable(name: str) -> bool:
    """Sign every header except the hop-by-hop and client-identifying ones."""
    return name not in IGNORED_HEADERS


def format_timestamp(now: datetime) -> str:
    """Format an instant as ISO-8601 basic UTC (YYYYMMDDTHHMMSSZ).

    Naive datetimes are taken to already be in UTC.
    """
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    return now.strftime(TIMESTAMP_FORMAT)


def split_url(url: Union[str, httpx.URL]) -> SplitResult:
    """Split a URL, rejecting anything without a scheme and host."""
    try:
        parts = urlsplit(str(url))
        # Accessing .port validates it
        parts.port
    except ValueError as e:
        raise InvalidRequest(f"Malformed URL: {e}") from e

    if not parts.scheme or not parts.hostname:
        raise InvalidRequest(f"URL has no host: {url}")

    return parts


def host_from_url(parts: SplitResult) -> str:
    """Derive the Host header value, dropping the scheme's default port."""
    host = parts.hostname or ""
    if ":" in host:
        host = f"[{host}]"
    port = parts.port
    if port is not None and port != _DEFAULT_PORTS.get(parts.scheme):
        host = f"{host}:{port}"
    return host


def encode_segment(segment: str) -> str:
    """Percent-encode one path segment.

    The input is decoded first so an already-encoded URL is not encoded
    twice.
    """
    return quote(unquote(segment), safe=UNRESERVED)


def canonical_uri(path: str) -> str:
    """Encode every path segment on its own, keeping the "/" separators.

    Segments are not normalized: "." and ".." pass through, and a trailing
    slash survives.
    """
    if not path:
        return "/"
    return "/".join(
        encode_segment(segment) if segment else "" for segment in path.split("/")
    )


def query_pairs(query: str) -> list[tuple[str, str]]:
    """Decode a raw query string into (key, value) pairs.

    Repeated keys are kept in order, and a key with no "=" gets an empty
    value.
    """
    return parse_qsl(query, keep_blank_values=True)


def canonical_query(pairs: Iterable[tuple[str, str]]) -> str:
    """Build the canonical query string from decoded pairs.

    Keys are sorted by their encoded byte order. Values that share a key
    keep their original order.
    """
    encoded = [
        (quote(key, safe=UNRESERVED), quote(value, safe=UNRESERVED))
        for key, value in pairs
    ]
    encoded.sort(key=lambda pair: pair[0])
    return "&".join(f"{key}={value}" for key, value in encoded)


def trim_all(value: str) -> str:
    """Trim a header value and collapse inner whitespace runs to one space."""
    return _WHITESPACE_RUN.sub(" ", value).strip(" ")


def select_headers(
    headers: HeadersLike,
    parts: SplitResult,
    include: HeaderFilter = default_signable,
) -> list[tuple[str, str]]:
    """Pick the headers to sign and render their canonical values.

    Returns (lowercase name, value) pairs sorted by name. Repeated headers
    are joined with "," in the order they were added. A host header is
    always present, derived from the URL when the request has none.
    """
    try:
        items = httpx.Headers(headers).multi_items()
    except UnicodeEncodeError as e:
        raise InvalidRequest(f"Header values must be ASCII: {e}") from e

    values: dict[str, list[str]] = {}
    for name, value in items:
        name = name.strip().lower()
        if not include(name):
            continue
        values.setdefault(name, []).append(trim_all(value))

    if "host" not in values:
        values["host"] = [host_from_url(parts)]

    selected = []
    for name in sorted(values):
        value = ",".join(values[name])
        if not value.isascii():
            raise InvalidRequest(f"Header {name} has a non-ASCII value")
        selected.append((name, value))
    return selected


def canonical_headers(selected: list[tuple[str, str]]) -> str:
    """Render selected headers as "name:value" lines, each newline-terminated."""
    return "".join(f"{name}:{value}\n" for name, value in selected)


def signed_header_names(selected: list[tuple[str, str]]) -> str:
    return ";".join(name for name, _ in selected)


def hash_payload(body: Any) -> str:
    """Hex SHA-256 of a request body.

    Accepts bytes, str, None or a seekable binary file object. File
    objects are read from their current position, which is restored after
    hashing.
    """
    if body is None:
        return EMPTY_SHA256
    if isinstance(body, str):
        body = body.encode("utf-8")
    if isinstance(body, (bytes, bytearray, memoryview)):
        return hashlib.sha256(body).hexdigest()

    if not hasattr(body, "read"):
        raise HashFailure(f"Cannot hash a body of type {type(body).__name__}")

    digest = hashlib.sha256()
    try:
        position = body.tell()
        for chunk in iter(functools.partial(body.read, PAYLOAD_BUFFER), b""):
            digest.update(chunk)
        body.seek(position)
    except (OSError, ValueError) as e:
        raise HashFailure(f"Failed to read body for hashing: {e}") from e
    return digest.hexdigest()


def canonical_request(
    method: str,
    url: Union[str, httpx.URL],
    headers: HeadersLike,
    payload_hash: str,
    include: HeaderFilter = default_signable,
    query: Optional[Iterable[tuple[str, str]]] = None,
) -> tuple[str, str]:
    """Build the canonical request for a request.

    Args:
        method: HTTP method.
        url: Full request URL.
        headers: Request headers.
        payload_hash: Hex SHA-256 of the body, UNSIGNED_PAYLOAD or
                      STREAMING_PAYLOAD.
        include: Signing policy deciding which headers participate.
        query: Decoded query pairs to use instead of the URL's own query.

    Returns:
        Tuple of (canonical request, signed header names).

    Raises:
        InvalidRequest: If the URL has no host or a header is not ASCII.
    """
    parts = split_url(url)
    if query is None:
        query = query_pairs(parts.query)

    selected = select_headers(headers, parts, include)
    signed_headers = signed_header_names(selected)

    text = "\n".join([
        method.upper(),
        canonical_uri(parts.path),
        canonical_query(query),
        canonical_headers(selected),
        signed_headers,
        payload_hash,
    ])
    return text, signed_headers


def credential_scope(date: str, region: str, service: str) -> str:
    """Scope string YYYYMMDD/<region>/<service>/aws4_request."""
    return "/".join([date, region, service, SCOPE_TERMINATOR])


def string_to_sign(timestamp: str, scope: str, canonical: str) -> str:
    """Four-line string-to-sign for a canonical request."""
    return "\n".join([
        ALGORITHM,
        timestamp,
        scope,
        hashlib.sha256(canonical.encode("ascii")).hexdigest(),
    ])
