"""s3courier: object transfer and request composition for S3-compatible storage."""

__version__ = "0.1.0"

from s3courier.client import S3Client
from s3courier.conditions import ByteRange, ConditionSet
from s3courier.encryption import SseCustomerKey, SseKms, SseS3
from s3courier.models import CopySource, ObjectWriteResult, TransferOutcome, TransferSpec
from s3courier.presign import PostPolicy, PresignedGrant

__all__ = [
    "ByteRange",
    "ConditionSet",
    "CopySource",
    "ObjectWriteResult",
    "PostPolicy",
    "PresignedGrant",
    "S3Client",
    "SseCustomerKey",
    "SseKms",
    "SseS3",
    "TransferOutcome",
    "TransferSpec",
]
