from typing import Any, Dict, List, Optional

import structlog
from botocore.exceptions import ClientError

from filemanager.file_access.base_item import BaseItemModel
from filemanager.file_access.s3.helper import ACL_POLICY_DEFAULT, ACL_POLICY_INHERIT

logger = structlog.get_logger()

# getObjectAcl grantee fields and their names in Grant* header values
_GRANTEE_FIELDS = (
    ("ID", "id"),
    ("URI", "uri"),
    ("EmailAddress", "emailAddress"),
)


def _grant_param_name(permission: str) -> str:
    """FULL_CONTROL -> GrantFullControl, READ_ACP -> GrantReadACP."""
    parts = [part if part == "ACP" else part.capitalize() for part in permission.split("_")]
    return "Grant" + "".join(parts)


def grants_to_params(grants: List[Dict[str, Any]]) -> Dict[str, str]:
    """Convert a ``get_object_acl`` grant list into ``put_object`` Grant* arguments."""
    collected: Dict[str, List[str]] = {}
    for grant in grants or []:
        grantee = grant.get("Grantee")
        permission = grant.get("Permission")
        if not isinstance(grantee, dict) or not permission:
            continue
        for field, name in _GRANTEE_FIELDS:
            if grantee.get(field):
                collected.setdefault(_grant_param_name(permission), []).append(f'{name}="{grantee[field]}"')
                break
    return {param: ", ".join(values) for param, values in collected.items()}


class S3ItemModel(BaseItemModel):
    """Item stored as an object (or a ``/``-terminated folder marker) in a bucket."""

    _acl_params: Optional[Dict[str, str]] = None

    @property
    def key(self) -> str:
        return self.storage.key_for(self.absolute_path)

    def reset_stats(self, path=None, stat=None):
        self._acl_params = None
        return super().reset_stats(path, stat=stat)

    def _file_size(self) -> int:
        if self._stat is not None and self._stat.size is not None:
            return self._stat.size
        return super()._file_size()

    def get_acl_permissions(self) -> Dict[str, Any]:
        return self.storage.helper.get_object_acl(self.key)

    def get_acl_params(self) -> Dict[str, str]:
        """
        ACL arguments for object writes, based on the storage ACL policy.

        ``default`` applies the configured default ACL, ``inherit`` re-applies
        the grants of this object (one extra request per object).
        """
        if self._acl_params is not None:
            return self._acl_params

        params: Dict[str, str] = {}
        policy = self.storage.acl_policy
        if policy == ACL_POLICY_DEFAULT and self.storage.helper.default_acl:
            params["ACL"] = self.storage.helper.default_acl
        elif policy == ACL_POLICY_INHERIT:
            try:
                acl = self.get_acl_permissions()
                params.update(grants_to_params(acl.get("Grants", [])))
            except ClientError as exc:
                logger.warning("s3_acl_fetch_failed", key=self.key, error=str(exc))

        self._acl_params = params
        return params
