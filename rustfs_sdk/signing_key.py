"""Scoped SigV4 signing key derivation.

    kDate    = HMAC("AWS4" + secret, date)
    kRegion  = HMAC(kDate, region)
    kService = HMAC(kRegion, service)
    kSigning = HMAC(kService, "aws4_request")
"""

import hashlib
import hmac
import threading

from rustfs_sdk.canonical import SCOPE_TERMINATOR

# Keys for a handful of (date, region, service) scopes are plenty
DEFAULT_CACHE_SIZE = 16


def hmac_sha256(key: bytes, message: str) -> bytes:
    return hmac.new(key, message.encode("utf-8"), hashlib.sha256).digest()


def derive_signing_key(secret: str, date: str, region: str, service: str) -> bytes:
    """Derive the 32-byte signing key for a credential scope.

    Args:
        secret: Secret access key.
        date: UTC date as YYYYMMDD.
        region: Region name, e.g. "us-east-1".
        service: Service name, "s3" or "sts".

    Returns:
        The derived key.
    """
    k_date = hmac_sha256(f"AWS4{secret}".encode("utf-8"), date)
    k_region = hmac_sha256(k_date, region)
    k_service = hmac_sha256(k_region, service)
    return hmac_sha256(k_service, SCOPE_TERMINATOR)


def sign_string(signing_key: bytes, message: str) -> str:
    """Hex HMAC-SHA256 signature of a string-to-sign."""
    return hmac.new(signing_key, message.encode("utf-8"), hashlib.sha256).hexdigest()


class SigningKeyCache:
    """Per-signer cache of derived keys keyed on (date, region, service).

    The cache remembers a fingerprint of the secret it was filled with and
    empties itself as soon as a different secret is presented.
    """

    def __init__(self, maxsize: int = DEFAULT_CACHE_SIZE):
        self.maxsize = maxsize
        self._lock = threading.Lock()
        self._fingerprint: bytes = b""
        self._keys: dict[tuple[str, str, str], bytes] = {}

    def get(self, secret: str, date: str, region: str, service: str) -> bytes:
        fingerprint = hashlib.sha256(secret.encode("utf-8")).digest()
        scope = (date, region, service)

        with self._lock:
            if not hmac.compare_digest(fingerprint, self._fingerprint):
                self._keys.clear()
                self._fingerprint = fingerprint

            key = self._keys.get(scope)
            if key is None:
                if len(self._keys) >= self.maxsize:
                    self._keys.clear()
                key = derive_signing_key(secret, date, region, service)
                self._keys[scope] = key
            return key

    def clear(self) -> None:
        with self._lock:
            self._keys.clear()
            self._fingerprint = b""

    def __len__(self) -> int:
        return len(self._keys)
