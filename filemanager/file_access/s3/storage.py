"""
S3 storage.

S3 has no real folders: a folder is a zero-byte object whose key ends with
``/``, or simply a common prefix of other keys. Every recursive operation is
expressed as a key listing followed by per-key requests.

Absolute paths have the form ``s3://<bucket>/<root>/<relative path>`` and
object keys are the part after the bucket.
"""
from datetime import datetime
from typing import Any, BinaryIO, Dict, List, Optional

import structlog
from botocore.exceptions import ClientError

from filemanager.config import S3StorageConfig
from filemanager.file_access.base_item import BaseItemModel, ItemStat
from filemanager.file_access.base_storage import STORAGE_S3_NAME, BaseStorage, empty_summary
from filemanager.file_access.exceptions import BackendFailureError
from filemanager.file_access.paths import PathResolver, clean_path
from filemanager.file_access.permissions import AuthCallbacks
from filemanager.file_access.s3.helper import ACL_POLICY_INHERIT, S3StorageHelper, trim_key
from filemanager.file_access.s3.item_model import S3ItemModel
from filemanager.file_access.streaming import STREAM_CHUNK_SIZE, FileStream, parse_range

logger = structlog.get_logger()

DIRECTORY_STAT = ItemStat(exists=True, is_dir=True)


def _timestamp(value: Optional[datetime]) -> Optional[int]:
    return int(value.timestamp()) if value is not None else None


class S3Storage(BaseStorage):
    """Storage backed by an S3-compatible bucket."""

    name = STORAGE_S3_NAME
    item_class = S3ItemModel

    def __init__(self, config: S3StorageConfig, auth: Optional[AuthCallbacks] = None,
                 registry=None, client=None):
        super().__init__(config, auth=auth, registry=registry)
        self.acl_policy = self.config("acl_policy")
        self.helper = S3StorageHelper(self.config("credentials"), self.config("encryption"), client=client)
        self._set_dynamic_root(self.config("root", "userfiles"))

    def _set_dynamic_root(self, path: str) -> None:
        dynamic_root = clean_path("/" + path + "/")
        self.resolver = PathResolver(self.get_s3_wrapper_path(dynamic_root), dynamic_root)

    def get_s3_wrapper_path(self, path: str) -> str:
        return "s3://" + clean_path(self.helper.bucket + "/" + path)

    def set_root(self, path: str, make_dir: bool = False, **kwargs) -> None:
        self._set_dynamic_root(path)
        logger.info("s3_storage_root", storage_root=self.get_root(), dynamic_root=self.get_dynamic_root())
        if make_dir and not self.helper.exist(self.key_for(self.get_root())):
            logger.info("s3_create_root", key=self.key_for(self.get_root()))
            self.helper.put(self.key_for(self.get_root()))

    def key_for(self, absolute_path: str) -> str:
        """Object key for an ``s3://`` absolute path."""
        bucket_root = "s3://" + self.helper.bucket + "/"
        if absolute_path.startswith(bucket_root):
            return absolute_path[len(bucket_root):]
        return trim_key(absolute_path)

    def _folder_key(self, item: BaseItemModel) -> str:
        return self.key_for(item.absolute_path).rstrip("/") + "/"

    # Status

    def stat(self, absolute_path: str) -> ItemStat:
        """
        Resolve a key to a file, an explicit folder marker or an implicit folder.

        The storage root always exists.
        """
        key = self.key_for(absolute_path)
        root_key = self.key_for(self.get_root())
        if not key.strip("/") or key.rstrip("/") == root_key.rstrip("/"):
            return DIRECTORY_STAT

        head = self.helper.head(key, handle=True)
        if head is not None:
            if key.endswith("/"):
                return ItemStat(exists=True, is_dir=True, mtime=_timestamp(head.get("LastModified")))
            return ItemStat(
                exists=True,
                is_dir=False,
                size=head.get("ContentLength"),
                mtime=_timestamp(head.get("LastModified")),
                content_type=head.get("ContentType"),
            )

        folder_key = key.rstrip("/") + "/"
        if not key.endswith("/"):
            head = self.helper.head(folder_key, handle=True)
            if head is not None:
                return ItemStat(exists=True, is_dir=True, mtime=_timestamp(head.get("LastModified")))
        if self.helper.has_prefix(folder_key):
            return DIRECTORY_STAT
        return ItemStat(exists=False, is_dir=False)

    def has_system_read_permission(self, path: str) -> bool:
        # Existence implies readability
        return True

    def has_system_write_permission(self, path: str) -> bool:
        return True

    def _item_from_listing(self, relative_path: str, obj: Optional[Dict[str, Any]] = None) -> BaseItemModel:
        # Listed keys exist, so no HEAD request is needed per item
        obj = obj or {}
        stat = ItemStat(
            exists=True,
            is_dir=relative_path.endswith("/"),
            size=None if relative_path.endswith("/") else obj.get("Size"),
            mtime=_timestamp(obj.get("LastModified")),
        )
        return self.get_item(relative_path, stat=stat)

    def list_children(self, directory: BaseItemModel) -> List[BaseItemModel]:
        prefix = self._folder_key(directory)
        level = self.helper.list_level(prefix)
        base = directory.relative_path.rstrip("/") + "/"
        children = []
        for entry in level["prefixes"]:
            name = entry["Prefix"][len(prefix):]
            children.append(self._item_from_listing(base + name))
        for obj in level["objects"]:
            name = obj["Key"][len(prefix):]
            # Skip the folder marker itself
            if not name:
                continue
            children.append(self._item_from_listing(base + name, obj))
        return sorted(children, key=lambda item: item.relative_path)

    def _list_tree(self, directory: BaseItemModel) -> List[str]:
        """
        Every path below ``directory`` relative to it, folders slash-terminated.

        Folders that only exist as common prefixes are included.
        """
        prefix = self._folder_key(directory)
        entries = set()
        for obj in self.helper.iter_objects(prefix):
            relative = obj["Key"][len(prefix):]
            if not relative:
                continue
            entries.add(relative)
            parts = relative.rstrip("/").split("/")[:-1]
            for depth in range(1, len(parts) + 1):
                entries.add("/".join(parts[:depth]) + "/")
        return sorted(entries)

    # Mutations

    def create_folder(self, target: BaseItemModel, prototype: Optional[BaseItemModel] = None,
                      options: Optional[Dict[str, Any]] = None) -> bool:
        """
        Put an empty folder marker for ``target``.

        Args:
            target: Folder item to create
            prototype: Item whose grants are copied under the ``inherit`` ACL policy,
                defaults to the parent of ``target``
            options: Extra ``put_object`` arguments, merged with the ACL parameters

        Returns:
            True if the marker was written
        """
        options = dict(options or {})
        if self.acl_policy == ACL_POLICY_INHERIT:
            if prototype is None:
                prototype = target.closest() or target
            options.update(prototype.get_acl_params())
        key = self._folder_key(target)
        try:
            self.helper.put(key, b"", options)
            logger.info("s3_mkdir", key=key)
            return True
        except ClientError as exc:
            logger.error("s3_mkdir_failed", key=key, error=str(exc))
            return False

    def copy_item(self, source: BaseItemModel, target: BaseItemModel, remove: bool = False) -> bool:
        source_key = self.key_for(source.absolute_path)
        target_key = self.key_for(target.absolute_path)
        try:
            self.helper.copy(source_key, target_key, source.get_acl_params())
            if remove:
                self.helper.delete(source_key)
            logger.info("s3_copy_item", source=source_key, target=target_key, remove=remove)
            return True
        except ClientError as exc:
            logger.error("s3_copy_item_failed", source=source_key, target=target_key, error=str(exc))
            return False

    def _walk_pairs(self, source: BaseItemModel, target: BaseItemModel):
        # Deepest entries first
        source_base = source.relative_path.rstrip("/") + "/"
        target_base = target.relative_path.rstrip("/") + "/"
        for relative in reversed(self._list_tree(source)):
            item_source = self._item_from_listing(source_base + relative)
            item_target = self.get_item(
                target_base + relative,
                stat=ItemStat(exists=False, is_dir=relative.endswith("/")),
            )
            yield item_source, item_target

    def copy_recursive(self, source: BaseItemModel, target: BaseItemModel) -> bool:
        """
        Copy a file, or every key under a folder.

        Stops issuing requests after the first failure. Objects copied before
        the failure are left in place.
        """
        flag = True
        if source.is_directory():
            flag = flag and self.create_folder(target, source)
            for item_source, item_target in self._walk_pairs(source, target):
                if item_source.is_directory():
                    flag = flag and self.create_folder(item_target, item_source)
                else:
                    flag = flag and self.copy_item(item_source, item_target)
        else:
            flag = flag and self.copy_item(source, target)
        return flag

    def _remove_marker(self, item: BaseItemModel) -> None:
        key = self._folder_key(item)
        try:
            self.helper.delete(key)
        except ClientError as exc:
            logger.warning("s3_remove_marker_failed", key=key, error=str(exc))

    def rename_recursive(self, source: BaseItemModel, target: BaseItemModel) -> bool:
        """
        Move a file, or every key under a folder, then drop the source markers.

        Same partial-failure behavior as ``copy_recursive``. Source folder
        markers are only removed while no request has failed.

        Returns:
            True if every key was moved
        """
        flag = True
        if source.is_directory():
            flag = flag and self.create_folder(target, source)
            for item_source, item_target in self._walk_pairs(source, target):
                if item_source.is_directory():
                    flag = flag and self.create_folder(item_target, item_source)
                    if flag:
                        self._remove_marker(item_source)
                else:
                    flag = flag and self.copy_item(item_source, item_target, remove=True)
            if flag:
                self._remove_marker(source)
        else:
            flag = flag and self.copy_item(source, target, remove=True)
        return flag

    def unlink_recursive(self, target: BaseItemModel) -> bool:
        key = self.key_for(target.absolute_path)
        try:
            if target.is_directory():
                key = self._folder_key(target)
                self.helper.batch_delete(key)
            else:
                self.helper.delete(key)
        except ClientError as exc:
            logger.error("s3_delete_failed", key=key, error=str(exc))
            return False
        # Best effort on eventually consistent stores
        return not self.helper.exist(key)

    def write_stream(self, item: BaseItemModel, stream: BinaryIO, content_type: Optional[str] = None) -> bool:
        key = self.key_for(item.absolute_path)
        options: Dict[str, Any] = {}
        if self.acl_policy == ACL_POLICY_INHERIT:
            parent = item.closest()
            if parent is not None:
                options.update(parent.get_acl_params())
        if content_type:
            options["ContentType"] = content_type
        try:
            self.helper.upload(key, stream, options)
            logger.info("s3_write", key=key)
            return True
        except ClientError as exc:
            logger.error("s3_write_failed", key=key, error=str(exc))
            return False

    # Reading

    def _head_or_fail(self, path: str) -> Dict[str, Any]:
        key = self.key_for(path)
        try:
            return self.helper.head(key)
        except ClientError as exc:
            raise BackendFailureError("ERROR_READING_FILE", [key], message=str(exc)) from exc

    def get_file_size(self, path: str) -> int:
        return int(self._head_or_fail(path).get("ContentLength", 0))

    def get_mime_type(self, path: str) -> str:
        head = self.helper.head(self.key_for(path), handle=True)
        if head and head.get("ContentType"):
            return head["ContentType"]
        return self.guess_mime_type(path)

    def read_bytes(self, item: BaseItemModel) -> bytes:
        key = self.key_for(item.absolute_path)
        try:
            return self.helper.get(key)["Body"].read()
        except ClientError as exc:
            raise BackendFailureError("ERROR_READING_FILE", [key], message=str(exc)) from exc

    def read_file(self, path: str, range_header: Optional[str] = None,
                  chunk_size: int = STREAM_CHUNK_SIZE) -> FileStream:
        """
        Stream an object, issuing a ranged GET for a byte-range request.

        Raises:
            BackendFailureError: If the object cannot be read
            RangeNotSatisfiableError: If the range lies outside the object
        """
        head = self._head_or_fail(path)
        file_size = int(head.get("ContentLength", 0))
        byte_range = parse_range(range_header, file_size)
        key = self.key_for(path)
        request_range = f"bytes={byte_range.start}-{byte_range.end}" if byte_range else None
        try:
            body = self.helper.get(key, request_range)["Body"]
        except ClientError as exc:
            raise BackendFailureError("ERROR_READING_FILE", [key], message=str(exc)) from exc
        return FileStream(
            chunks=body.iter_chunks(chunk_size),
            total_size=file_size,
            mime_type=head.get("ContentType") or self.guess_mime_type(path),
            filename=key.rstrip("/").rsplit("/", 1)[-1],
            byte_range=byte_range,
            on_close=body.close,
        )

    def get_dir_summary(self, directory: str, result: Optional[Dict[str, int]] = None) -> Dict[str, int]:
        """Deep listing without delimiter, filtered client-side."""
        if result is None:
            result = empty_summary()
        model_dir = self.get_item(directory)
        prefix = self._folder_key(model_dir)
        base = model_dir.relative_path.rstrip("/") + "/"
        for obj in self.helper.iter_objects(prefix):
            relative = obj["Key"][len(prefix):]
            if not relative:
                continue
            model = self._item_from_listing(base + relative, obj)
            if not (model.has_read_permission() and model.is_unrestricted()):
                continue
            if model.is_directory():
                result["folders"] += 1
            else:
                result["files"] += 1
                result["size"] += int(obj.get("Size", 0))
        return result

    # URLs

    def get_file_url(self, item: BaseItemModel, expires: int = 3600) -> str:
        """Public CDN URL when a CDN hostname is configured, a presigned URL otherwise."""
        key = self.key_for(item.absolute_path)
        if self.helper.cdn_hostname:
            return self.helper.get_cdn_url(key)
        return self.helper.get_presigned_url(key, expires)

