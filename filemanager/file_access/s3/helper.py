"""
Thin boto3 wrapper used by the S3 storage.

All keys passed in may carry a leading slash; it is trimmed before any call.
No call is retried: the first ``ClientError`` surfaces to the caller.
"""
from typing import TYPE_CHECKING, Any, BinaryIO, Dict, Iterator, List, Optional

import boto3
import structlog
from botocore.exceptions import ClientError

if TYPE_CHECKING:
    from mypy_boto3_s3 import S3Client

from filemanager.config import S3CredentialsConfig
from filemanager.file_access.exceptions import ConfigurationError

logger = structlog.get_logger()

ACL_PRIVATE = "private"
ACL_PUBLIC_READ = "public-read"
ACL_PUBLIC_READ_WRITE = "public-read-write"
ACL_AUTHENTICATED_READ = "authenticated-read"
ACL_BUCKET_OWNER_READ = "bucket-owner-read"
ACL_BUCKET_OWNER_FULL_CONTROL = "bucket-owner-full-control"

ACL_POLICY_DEFAULT = "default"
ACL_POLICY_INHERIT = "inherit"

# delete_objects accepts at most this many keys per request
DELETE_BATCH_SIZE = 1000


def trim_key(key: str) -> str:
    return key.lstrip("/")


def error_status(exc: ClientError) -> int:
    return int(exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0) or 0)


class S3StorageHelper:
    """Bucket-scoped S3 operations with ACL and encryption defaults applied."""

    def __init__(self, credentials: Optional[S3CredentialsConfig], encryption: Optional[str] = None,
                 client: Optional["S3Client"] = None):
        if credentials is None:
            raise ConfigurationError("S3_CREDENTIALS_NOT_SET", message="S3 storage credentials isn't set")
        if not credentials.region:
            raise ConfigurationError("S3_REGION_NOT_SET", message="Region isn't set")
        if not credentials.bucket:
            raise ConfigurationError("S3_BUCKET_NOT_SET", message="You must set bucket name")

        self.region = credentials.region
        self.bucket = credentials.bucket
        self.endpoint = credentials.endpoint
        self.default_acl = credentials.default_acl
        self.cdn_hostname = credentials.cdn_hostname.rstrip("/") if credentials.cdn_hostname else None
        self.encryption = encryption
        self.client = client or boto3.client(
            "s3",
            region_name=credentials.region,
            endpoint_url=credentials.endpoint,
            aws_access_key_id=credentials.access_key_id,
            aws_secret_access_key=credentials.secret_access_key,
            **credentials.options,
        )

    def _encryption_args(self) -> Dict[str, Any]:
        return {"ServerSideEncryption": self.encryption} if self.encryption else {}

    def apply_acl_policy(self, options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Add the default ACL unless explicit grants are given; S3 rejects both at once."""
        options = dict(options or {})
        if any(name.startswith("Grant") for name in options):
            return options
        if not options.get("ACL") and self.default_acl:
            options["ACL"] = self.default_acl
        return options

    def put(self, key: str, data: bytes = b"", options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        args = {**self.apply_acl_policy(options), **self._encryption_args()}
        return self.client.put_object(Bucket=self.bucket, Key=trim_key(key), Body=data, **args)

    def upload(self, key: str, stream: BinaryIO, options: Optional[Dict[str, Any]] = None) -> None:
        extra = {**self.apply_acl_policy(options), **self._encryption_args()}
        self.client.upload_fileobj(stream, self.bucket, trim_key(key), ExtraArgs=extra or None)

    def get(self, key: str, byte_range: Optional[str] = None) -> Dict[str, Any]:
        args: Dict[str, Any] = {"Bucket": self.bucket, "Key": trim_key(key)}
        if byte_range:
            args["Range"] = byte_range
        return self.client.get_object(**args)

    def head(self, key: str, handle: bool = False) -> Optional[Dict[str, Any]]:
        """
        HEAD an object.

        With ``handle`` set, client errors (missing key, denied) return None
        while server errors still raise.
        """
        try:
            return self.client.head_object(Bucket=self.bucket, Key=trim_key(key))
        except ClientError as exc:
            if not handle or error_status(exc) >= 500:
                raise
            return None

    def exist(self, key: str) -> bool:
        return self.head(key, handle=True) is not None

    def get_object_acl(self, key: str) -> Dict[str, Any]:
        return self.client.get_object_acl(Bucket=self.bucket, Key=trim_key(key))

    def copy(self, key: str, destination: str, options: Optional[Dict[str, Any]] = None) -> None:
        extra = {**self.apply_acl_policy(options), **self._encryption_args()}
        self.client.copy(
            {"Bucket": self.bucket, "Key": trim_key(key)},
            self.bucket,
            trim_key(destination),
            ExtraArgs=extra or None,
        )

    def delete(self, key: str) -> Dict[str, Any]:
        return self.client.delete_object(Bucket=self.bucket, Key=trim_key(key))

    def batch_delete(self, prefix: str) -> int:
        """Delete every object whose key starts with ``prefix``."""
        keys = [obj["Key"] for obj in self.iter_objects(prefix)]
        for start in range(0, len(keys), DELETE_BATCH_SIZE):
            chunk = keys[start:start + DELETE_BATCH_SIZE]
            self.client.delete_objects(
                Bucket=self.bucket,
                Delete={"Objects": [{"Key": key} for key in chunk], "Quiet": True},
            )
        logger.info("s3_batch_delete", prefix=trim_key(prefix), count=len(keys))
        return len(keys)

    def iter_objects(self, prefix: str) -> Iterator[Dict[str, Any]]:
        """Deep listing: every object under ``prefix``, no delimiter."""
        paginator = self.client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket, Prefix=trim_key(prefix)):
            yield from page.get("Contents", [])

    def list_level(self, prefix: str) -> Dict[str, List[Dict[str, Any]]]:
        """Immediate children of ``prefix``: ``{"prefixes": [...], "objects": [...]}``."""
        result: Dict[str, List[Dict[str, Any]]] = {"prefixes": [], "objects": []}
        paginator = self.client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket, Prefix=trim_key(prefix), Delimiter="/"):
            result["prefixes"].extend(page.get("CommonPrefixes", []))
            result["objects"].extend(page.get("Contents", []))
        return result

    def has_prefix(self, prefix: str) -> bool:
        response = self.client.list_objects_v2(Bucket=self.bucket, Prefix=trim_key(prefix), MaxKeys=1)
        return response.get("KeyCount", 0) > 0

    def get_url(self, key: str) -> str:
        endpoint = self.endpoint or f"https://{self.bucket}.s3.{self.region}.amazonaws.com"
        if self.endpoint:
            return f"{endpoint.rstrip('/')}/{self.bucket}/{trim_key(key)}"
        return f"{endpoint}/{trim_key(key)}"

    def get_presigned_url(self, key: str, expires: int = 3600) -> str:
        return self.client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": trim_key(key)},
            ExpiresIn=expires,
        )

    def get_cdn_url(self, key: str) -> str:
        return f"{self.cdn_hostname}/{trim_key(key)}"
