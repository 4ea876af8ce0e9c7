"""Error kinds surfaced by the signer, streaming signer and credential providers.

Messages never include secret keys, session tokens or derived signing keys.
"""

from typing import Optional


class SigningError(Exception):
    """Base class for every error raised by the signing core."""

    pass


class MissingCredentials(SigningError):
    """Raised when a provider cannot supply the credentials a request needs."""

    pass


class MissingRegion(SigningError):
    """Raised when an S3 request is signed without a region."""

    pass


class InvalidExpiry(SigningError):
    """Raised when a presign window is outside [1 second, 7 days]."""

    def __init__(self, expires_in: float):
        super().__init__(
            f"Presign expiry must be between 1 second and 7 days, got {expires_in}s"
        )
        self.expires_in = expires_in


class InvalidRequest(SigningError):
    """Raised for an unparseable URL or a request without a host."""

    pass


class HashFailure(SigningError):
    """Raised when the request body cannot be read to compute its hash."""

    pass


class StreamReadFailure(SigningError):
    """Raised when the body of an aws-chunked upload cannot be read."""

    pass


class ResponseError(SigningError):
    """An error document returned by the server."""

    def __init__(
        self,
        code: str,
        message: str,
        request_id: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        text = f"{code}: {message}"
        if request_id:
            text = f"{text} (RequestID: {request_id})"
        super().__init__(text)
        self.code = code
        self.message = message
        self.request_id = request_id
        self.status_code = status_code


class STSFailure(ResponseError):
    """STS answered an AssumeRole call with a non-200 status."""

    pass


class STSParseFailure(SigningError):
    """The STS response body could not be decoded."""

    pass


class S3Error(ResponseError):
    """S3 answered with a non-2xx status."""

    def __init__(
        self,
        code: str,
        message: str,
        request_id: Optional[str] = None,
        status_code: Optional[int] = None,
        resource: Optional[str] = None,
    ):
        super().__init__(code, message, request_id=request_id, status_code=status_code)
        self.resource = resource
