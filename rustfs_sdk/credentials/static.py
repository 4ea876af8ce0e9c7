"""Fixed credentials supplied by the caller."""

from typing import Optional

from rustfs_sdk.credentials.base import Credentials, Provider
from rustfs_sdk.errors import MissingCredentials
from rustfs_sdk.models import Credential


class StaticProvider(Provider):
    """Returns the same snapshot forever.

    Empty access and secret keys mean anonymous access.
    """

    def __init__(
        self,
        access_key: str = "",
        secret_key: str = "",
        session_token: Optional[str] = None,
    ):
        self._credential = self._build(access_key, secret_key, session_token)

    @staticmethod
    def _build(
        access_key: str, secret_key: str, session_token: Optional[str]
    ) -> Credential:
        if not access_key and not secret_key:
            return Credential.anonymous()
        if not access_key or not secret_key:
            raise MissingCredentials(
                "Static credentials need both an access key and a secret key"
            )
        return Credential(
            access_key_id=access_key,
            secret_access_key=secret_key,
            session_token=session_token or None,
        )

    def retrieve(self) -> Credential:
        return self._credential

    def is_expired(self) -> bool:
        return False


def new_static_v4(
    access_key: str,
    secret_key: str,
    session_token: Optional[str] = None,
) -> Credentials:
    """Credentials that always sign with the given keys."""
    return Credentials(StaticProvider(access_key, secret_key, session_token))


def new_anonymous() -> Credentials:
    """Credentials that never sign."""
    return Credentials(StaticProvider())
