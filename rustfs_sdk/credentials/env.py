"""Credentials from environment variables.

Checked in order, the first complete pair wins:

    RUSTFS_ROOT_USER / RUSTFS_ROOT_PASSWORD
    RUSTFS_ACCESS_KEY / RUSTFS_SECRET_KEY

With neither pair set the provider falls back to anonymous access.
"""

import logging
import os
from typing import Mapping, Optional

from rustfs_sdk.credentials.base import Credentials, Provider
from rustfs_sdk.models import Credential

logger = logging.getLogger(__name__)

ENV_KEY_PAIRS = (
    ("RUSTFS_ROOT_USER", "RUSTFS_ROOT_PASSWORD"),
    ("RUSTFS_ACCESS_KEY", "RUSTFS_SECRET_KEY"),
)


class EnvProvider(Provider):
    """Reads the environment on every retrieve().

    Reports expired until the first retrieve() so the first get() always
    reads the environment.
    """

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self._environ = environ
        self._retrieved = False

    def retrieve(self) -> Credential:
        environ = os.environ if self._environ is None else self._environ
        self._retrieved = True

        for access_var, secret_var in ENV_KEY_PAIRS:
            access_key = environ.get(access_var, "")
            secret_key = environ.get(secret_var, "")
            if access_key and secret_key:
                logger.debug("Using credentials from %s", access_var)
                return Credential(
                    access_key_id=access_key,
                    secret_access_key=secret_key,
                )

        logger.debug("No credentials in environment, using anonymous access")
        return Credential.anonymous()

    def is_expired(self) -> bool:
        return not self._retrieved


def new_env(environ: Optional[Mapping[str, str]] = None) -> Credentials:
    """Credentials backed by the RUSTFS_* environment variables."""
    return Credentials(EnvProvider(environ))
