"""aws-chunked payload signing.

The body is cut into chunks of CHUNK_SIZE bytes and each chunk is sent as

    <hex size>;chunk-signature=<64 hex chars>\\r\\n<data>\\r\\n

Every chunk signature covers the previous one, starting from the seed
signature in the request's Authorization header, so chunks cannot be
dropped, reordered or altered without breaking verification. A zero-length
chunk always ends the stream.
"""

import hashlib
import io
import logging
import threading
from typing import Any, Iterator, Optional

import httpx

from rustfs_sdk.canonical import EMPTY_SHA256, STREAMING_PAYLOAD
from rustfs_sdk.errors import StreamReadFailure
from rustfs_sdk.signing_key import sign_string

logger = logging.getLogger(__name__)

# Chunk size used by the SDK: 64 KiB
CHUNK_SIZE = 64 * 1024

CHUNK_ALGORITHM = "AWS4-HMAC-SHA256-PAYLOAD"
CHUNK_SIGNATURE_FIELD = ";chunk-signature="
SIGNATURE_LENGTH = 64
CRLF = b"\r\n"


def chunk_string_to_sign(
    timestamp: str,
    scope: str,
    previous_signature: str,
    chunk_hash: str,
) -> str:
    """String-to-sign for one chunk, chained to the previous signature."""
    return "\n".join([
        CHUNK_ALGORITHM,
        timestamp,
        scope,
        previous_signature,
        EMPTY_SHA256,
        chunk_hash,
    ])


def frame_length(size: int) -> int:
    """Encoded length of one frame carrying `size` data bytes."""
    return (
        len(f"{size:x}")
        + len(CHUNK_SIGNATURE_FIELD)
        + SIGNATURE_LENGTH
        + len(CRLF)
        + size
        + len(CRLF)
    )


def inflated_length(length: int, chunk_size: int = CHUNK_SIZE) -> int:
    """Total bytes the streaming signer emits for a body of `length` bytes.

    This is the value to send as Content-Length. It counts every full
    chunk, the trailing partial chunk if any, and the zero-length
    terminator.
    """
    if length < 0:
        raise ValueError(f"length must be >= 0, got {length}")
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be > 0, got {chunk_size}")

    full_chunks, remainder = divmod(length, chunk_size)
    total = full_chunks * frame_length(chunk_size)
    if remainder:
        total += frame_length(remainder)
    return total + frame_length(0)


def prepare_streaming_request(
    request: httpx.Request,
    length: int,
    chunk_size: int = CHUNK_SIZE,
) -> None:
    """Set the headers an aws-chunked upload must carry before it is signed.

    Content-Length becomes the inflated length and the decoded length goes
    to x-amz-decoded-content-length.
    """
    request.headers["x-amz-content-sha256"] = STREAMING_PAYLOAD
    request.headers["content-encoding"] = "aws-chunked"
    request.headers["x-amz-decoded-content-length"] = str(length)
    request.headers["content-length"] = str(inflated_length(length, chunk_size))
    if "transfer-encoding" in request.headers:
        del request.headers["transfer-encoding"]


class ChunkSigner:
    """Signs successive chunks, each one chained to the signature before it."""

    def __init__(
        self,
        signing_key: bytes,
        timestamp: str,
        scope: str,
        seed_signature: str,
    ):
        """Initialize the chain.

        Args:
            signing_key: Key derived for the request's scope.
            timestamp: The request's x-amz-date value.
            scope: Credential scope of the request.
            seed_signature: Signature from the request's Authorization header.
        """
        self._signing_key = signing_key
        self.timestamp = timestamp
        self.scope = scope
        self.previous_signature = seed_signature

    def sign(self, chunk: bytes) -> str:
        """Sign a chunk and advance the chain."""
        chunk_hash = hashlib.sha256(chunk).hexdigest()
        string_to_sign = chunk_string_to_sign(
            self.timestamp, self.scope, self.previous_signature, chunk_hash
        )
        signature = sign_string(self._signing_key, string_to_sign)
        self.previous_signature = signature
        return signature

    def frame(self, chunk: bytes) -> bytes:
        """Sign a chunk and wrap it in its aws-chunked frame."""
        signature = self.sign(chunk)
        header = f"{len(chunk):x}{CHUNK_SIGNATURE_FIELD}{signature}".encode("ascii")
        return header + CRLF + chunk + CRLF


class StreamingPayload(httpx.SyncByteStream):
    """Lazy aws-chunked body built from a source of known length.

    Frames are produced on demand, one chunk at a time, either by iterating
    (how httpx sends a request body) or by calling read(). The stream
    cannot be restarted: once the terminator frame is out, every read
    returns b"".
    """

    def __init__(
        self,
        source: Any,
        length: int,
        signer: ChunkSigner,
        chunk_size: int = CHUNK_SIZE,
        cancel_event: Optional[threading.Event] = None,
    ):
        """Wrap a body for chunked signing.

        Args:
            source: bytes or a binary file object positioned at the body start.
            length: Exact number of body bytes to send.
            signer: Chunk signer seeded with the request signature.
            chunk_size: Bytes per chunk.
            cancel_event: When set, the next read aborts the stream.
        """
        if isinstance(source, (bytes, bytearray, memoryview)):
            source = io.BytesIO(bytes(source))
        if length < 0:
            raise ValueError(f"length must be >= 0, got {length}")

        self._source = source
        self.length = length
        self.chunk_size = chunk_size
        self._signer = signer
        self._cancel_event = cancel_event
        self._frames: Optional[Iterator[bytes]] = None
        self._buffer = bytearray()
        self._finished = False
        self.bytes_consumed = 0

    @property
    def content_length(self) -> int:
        return inflated_length(self.length, self.chunk_size)

    def _read_chunk(self, size: int) -> bytes:
        chunk = bytearray()
        while len(chunk) < size:
            if self._cancel_event is not None and self._cancel_event.is_set():
                raise StreamReadFailure("Upload cancelled")
            try:
                data = self._source.read(size - len(chunk))
            except (OSError, ValueError) as e:
                raise StreamReadFailure(f"Failed to read upload body: {e}") from e
            if not data:
                raise StreamReadFailure(
                    f"Upload body ended after {self.bytes_consumed + len(chunk)} "
                    f"of {self.length} bytes"
                )
            chunk += data
        return bytes(chunk)

    def _generate(self) -> Iterator[bytes]:
        remaining = self.length
        while remaining > 0:
            chunk = self._read_chunk(min(self.chunk_size, remaining))
            remaining -= len(chunk)
            self.bytes_consumed += len(chunk)
            logger.debug("Signed chunk of %d bytes", len(chunk))
            yield self._signer.frame(chunk)
        yield self._signer.frame(b"")
        logger.debug("Signed final chunk after %d bytes", self.bytes_consumed)

    def _next_frame(self) -> Optional[bytes]:
        if self._finished:
            return None
        if self._frames is None:
            self._frames = self._generate()
        try:
            return next(self._frames)
        except StopIteration:
            self._finished = True
            return None
        except StreamReadFailure:
            self._finished = True
            raise

    def __iter__(self) -> Iterator[bytes]:
        if self._buffer:
            pending = bytes(self._buffer)
            self._buffer.clear()
            yield pending
        while True:
            frame = self._next_frame()
            if frame is None:
                return
            yield frame

    def read(self, size: int = -1) -> bytes:
        """Read up to `size` bytes of the encoded stream (all if negative)."""
        while size < 0 or len(self._buffer) < size:
            frame = self._next_frame()
            if frame is None:
                break
            self._buffer += frame

        if size < 0:
            size = len(self._buffer)
        data = bytes(self._buffer[:size])
        del self._buffer[:size]
        return data

    def close(self) -> None:
        self._finished = True


class PlainPayload(httpx.SyncByteStream):
    """Unsigned body of known length, read in chunk-sized pieces."""

    def __init__(self, source: Any, length: int, chunk_size: int = CHUNK_SIZE):
        if isinstance(source, (bytes, bytearray, memoryview)):
            source = io.BytesIO(bytes(source))
        self._source = source
        self.length = length
        self.chunk_size = chunk_size

    def __iter__(self) -> Iterator[bytes]:
        remaining = self.length
        while remaining > 0:
            try:
                data = self._source.read(min(self.chunk_size, remaining))
            except (OSError, ValueError) as e:
                raise StreamReadFailure(f"Failed to read upload body: {e}") from e
            if not data:
                raise StreamReadFailure(
                    f"Upload body ended after {self.length - remaining} "
                    f"of {self.length} bytes"
                )
            remaining -= len(data)
            yield data
