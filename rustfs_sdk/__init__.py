"""
RustFS SDK request signing.

AWS Signature Version 4 for S3-compatible object storage: header and
presigned-URL signing, aws-chunked streaming uploads, and refreshing
credential providers (static, environment, STS AssumeRole).
"""

__version__ = "0.1.0"

from rustfs_sdk.client import S3Client
from rustfs_sdk.credentials import (
    Credentials,
    new_anonymous,
    new_assume_role,
    new_env,
    new_static_v4,
)
from rustfs_sdk.models import AssumeRoleOptions, ClientConfig, Credential, PayloadMode
from rustfs_sdk.post_policy import PostPolicy
from rustfs_sdk.signer import Signer, presign_v4, sign_v4

__all__ = [
    "AssumeRoleOptions",
    "ClientConfig",
    "Credential",
    "Credentials",
    "PayloadMode",
    "PostPolicy",
    "S3Client",
    "Signer",
    "new_anonymous",
    "new_assume_role",
    "new_env",
    "new_static_v4",
    "presign_v4",
    "sign_v4",
    "__version__",
]
