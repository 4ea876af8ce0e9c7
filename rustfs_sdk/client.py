"""Minimal S3 client wiring the signer to an httpx transport.

Object URLs are built in path style (http://host/bucket/key) or virtual
host style (http://bucket.host/key). Every request takes a fresh
credential snapshot and is signed just before it is sent, so retries
carry a new timestamp.
"""

import logging
import threading
import xml.etree.ElementTree as ET
from datetime import datetime, timedelta
from typing import Any, Callable, Optional, Union
from urllib.parse import quote, urlencode

import httpx
from h11 import LocalProtocolError as H11LocalProtocolError

from rustfs_sdk.canonical import UNRESERVED, presign_signable
from rustfs_sdk.config import parse_endpoint
from rustfs_sdk.credentials import Credentials
from rustfs_sdk.errors import InvalidRequest, S3Error, StreamReadFailure
from rustfs_sdk.models import ClientConfig, PayloadMode
from rustfs_sdk.post_policy import PostPolicy
from rustfs_sdk.retry import retry_with_backoff
from rustfs_sdk.signer import Signer, utcnow
from rustfs_sdk.streaming import CHUNK_SIZE
from rustfs_sdk.xmlutil import error_fields, parse_document

logger = logging.getLogger(__name__)

DEFAULT_PRESIGN_EXPIRY = 3600

# Response header overrides accepted on presigned GET/HEAD URLs
RESPONSE_OVERRIDES = (
    "response-cache-control",
    "response-content-disposition",
    "response-content-encoding",
    "response-content-language",
    "response-content-type",
    "response-expires",
)


def build_http_client(config: ClientConfig) -> httpx.Client:
    """Build an httpx client with the configured timeout."""
    return httpx.Client(timeout=config.timeout)


def encode_key(key: str) -> str:
    """Percent-encode an object key, keeping "/" separators."""
    return quote(key, safe="/" + UNRESERVED)


def parse_s3_error(response: httpx.Response) -> S3Error:
    """Build an S3Error from a non-2xx response.

    HEAD responses and non-XML bodies have no error document, so the
    status code stands in for the error code.
    """
    fields = None
    if response.content:
        try:
            fields = error_fields(parse_document(response.content))
        except ET.ParseError:
            logger.debug("Error response body is not XML")

    if fields is None:
        return S3Error(
            str(response.status_code),
            response.reason_phrase,
            request_id=response.headers.get("x-amz-request-id"),
            status_code=response.status_code,
        )

    return S3Error(
        fields["code"] or str(response.status_code),
        fields["message"] or response.reason_phrase,
        request_id=fields["request_id"] or response.headers.get("x-amz-request-id"),
        status_code=response.status_code,
        resource=fields["resource"],
    )


class S3Client:
    """Signs and sends object requests to an S3-compatible endpoint."""

    def __init__(
        self,
        config: ClientConfig,
        credentials: Credentials,
        http_client: Optional[httpx.Client] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize the client.

        Args:
            config: Endpoint, region and retry settings.
            credentials: Credentials cache supplying snapshots.
            http_client: httpx client to send with; built from config when
                         omitted.
            clock: Signing time source, for tests.
        """
        self.config = config
        self.endpoint = parse_endpoint(config.endpoint_url)
        self.credentials = credentials
        self.http_client = http_client or build_http_client(config)
        self.signer = Signer(
            credentials,
            region=config.region_name,
            clock=clock or utcnow,
        )

    def close(self) -> None:
        self.http_client.close()

    def __enter__(self) -> "S3Client":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def object_url(
        self,
        bucket: str,
        key: Optional[str] = None,
        query: Optional[dict[str, str]] = None,
    ) -> str:
        """Build the URL of a bucket or object."""
        if not bucket:
            raise InvalidRequest("Bucket name is required")

        scheme, netloc = self.endpoint.scheme, self.endpoint.netloc
        path = "/" + encode_key(key) if key else "/"
        if self.config.addressing_style == "virtual":
            url = f"{scheme}://{bucket}.{netloc}{path}"
        else:
            url = f"{scheme}://{netloc}/{bucket}{path if key else ''}"

        if query:
            url = f"{url}?{urlencode(query, quote_via=quote)}"
        return url

    def execute(
        self,
        method: str,
        bucket: str,
        key: Optional[str] = None,
        query: Optional[dict[str, str]] = None,
        headers: Optional[dict[str, str]] = None,
        content: Optional[bytes] = None,
        payload_mode: Optional[PayloadMode] = None,
    ) -> httpx.Response:
        """Sign and send a request with a replayable body, retrying transient failures.

        Raises:
            S3Error: If the server answers with a non-2xx status.
            RetryExhausted: If every attempt failed with a transient error.
        """
        url = self.object_url(bucket, key, query)
        if payload_mode is None:
            payload_mode = self.config.payload_mode

        def attempt() -> httpx.Response:
            request = httpx.Request(method, url, headers=headers, content=content)
            self.signer.sign(request, payload=payload_mode)
            logger.debug("%s %s", method, url)
            response = self.http_client.send(request)
            if not response.is_success:
                raise parse_s3_error(response)
            return response

        return retry_with_backoff(
            attempt,
            max_attempts=self.config.max_attempts,
            delays=self.config.retry_delays,
        )

    def get_object(
        self,
        bucket: str,
        key: str,
        byte_range: Optional[tuple[int, int]] = None,
    ) -> bytes:
        """Download an object, or an inclusive byte range of it."""
        headers = {}
        if byte_range is not None:
            headers["Range"] = f"bytes={byte_range[0]}-{byte_range[1]}"
        response = self.execute(
            "GET", bucket, key, headers=headers, payload_mode=PayloadMode.UNSIGNED
        )
        return response.content

    def put_object(
        self,
        bucket: str,
        key: str,
        body: Any,
        length: Optional[int] = None,
        content_type: Optional[str] = None,
        chunk_size: int = CHUNK_SIZE,
        cancel_event: Optional[threading.Event] = None,
    ) -> Optional[str]:
        """Upload an object and return its ETag.

        bytes bodies are sent in one piece with a signed payload hash unless
        the config enables streaming. File objects always stream as
        aws-chunked and need an explicit length.

        Raises:
            StreamReadFailure: If the body is shorter than `length`, fails to
                               read, or the upload is cancelled.
            S3Error: If the server rejects the upload.
        """
        headers = {}
        if content_type:
            headers["Content-Type"] = content_type

        is_bytes = isinstance(body, (bytes, bytearray))
        if is_bytes and not self.config.streaming:
            response = self.execute(
                "PUT",
                bucket,
                key,
                headers=headers,
                content=bytes(body),
                payload_mode=PayloadMode.SIGNED,
            )
            return response.headers.get("ETag")

        if length is None:
            if not is_bytes:
                raise InvalidRequest("length is required to stream a file object")
            length = len(body)

        return self._put_streaming(
            bucket, key, body, length, headers, chunk_size, cancel_event
        )

    def _put_streaming(
        self,
        bucket: str,
        key: str,
        body: Any,
        length: int,
        headers: dict[str, str],
        chunk_size: int,
        cancel_event: Optional[threading.Event],
    ) -> Optional[str]:
        url = self.object_url(bucket, key)
        request = httpx.Request("PUT", url, headers=headers)
        result = self.signer.sign_streaming(
            request,
            body,
            length,
            chunk_size=chunk_size,
            cancel_event=cancel_event,
        )
        logger.debug("PUT %s (aws-chunked, %d bytes)", url, length)

        # Streaming bodies cannot be replayed, so no retry here
        try:
            response = self.http_client.send(result.request)
        except (httpx.LocalProtocolError, H11LocalProtocolError) as e:
            raise StreamReadFailure(f"Upload body did not match its length: {e}") from e

        if not response.is_success:
            raise parse_s3_error(response)
        return response.headers.get("ETag")

    def _presign(
        self,
        method: str,
        bucket: str,
        key: str,
        expires_in: Union[int, timedelta],
        query: Optional[dict[str, str]] = None,
        headers: Optional[dict[str, str]] = None,
        include=presign_signable,
    ) -> str:
        request = httpx.Request(method, self.object_url(bucket, key, query), headers=headers)
        return self.signer.presign(request, expires_in, include=include)

    def presigned_get_object(
        self,
        bucket: str,
        key: str,
        expires_in: Union[int, timedelta] = DEFAULT_PRESIGN_EXPIRY,
        response_headers: Optional[dict[str, str]] = None,
    ) -> str:
        """Presigned GET URL, with optional response-* header overrides."""
        return self._presign(
            "GET", bucket, key, expires_in, query=_overrides(response_headers)
        )

    def presigned_head_object(
        self,
        bucket: str,
        key: str,
        expires_in: Union[int, timedelta] = DEFAULT_PRESIGN_EXPIRY,
        response_headers: Optional[dict[str, str]] = None,
    ) -> str:
        """Presigned HEAD URL, with optional response-* header overrides."""
        return self._presign(
            "HEAD", bucket, key, expires_in, query=_overrides(response_headers)
        )

    def presigned_put_object(
        self,
        bucket: str,
        key: str,
        expires_in: Union[int, timedelta] = DEFAULT_PRESIGN_EXPIRY,
        content_length: Optional[int] = None,
    ) -> str:
        """Presigned PUT URL.

        With content_length, Content-Length is signed into the URL and the
        server rejects uploads of any other size.
        """
        if content_length is None:
            return self._presign("PUT", bucket, key, expires_in)

        return self._presign(
            "PUT",
            bucket,
            key,
            expires_in,
            headers={"Content-Length": str(content_length)},
            include=_presign_with_length,
        )

    def presigned_post_policy(self, policy: PostPolicy) -> tuple[str, dict[str, str]]:
        """URL and form fields for a browser POST upload under `policy`.

        The form posts to the bucket URL with the returned fields plus the
        file field last.

        Raises:
            MissingCredentials: If the credentials are anonymous.
        """
        fields = self.signer.post_policy_form(policy)
        return self.object_url(policy.bucket), fields


def _presign_with_length(name: str) -> bool:
    return name == "content-length" or presign_signable(name)


def _overrides(response_headers: Optional[dict[str, str]]) -> Optional[dict[str, str]]:
    if not response_headers:
        return None
    for name in response_headers:
        if name not in RESPONSE_OVERRIDES:
            raise InvalidRequest(f"Unsupported response header override: {name}")
    return dict(response_headers)
