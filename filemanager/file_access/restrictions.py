"""
Extension and path-pattern allow/deny policies.

Unknown policy modes deny everything.
"""
from enum import Enum
from fnmatch import fnmatchcase
from typing import Iterable

from filemanager.config import PolicyConfig
from filemanager.file_access.paths import extension


class RestrictionPolicy(str, Enum):
    ALLOW_LIST = "ALLOW_LIST"
    DISALLOW_LIST = "DISALLOW_LIST"


def _apply_policy(policy: str, matched: bool) -> bool:
    if policy == RestrictionPolicy.ALLOW_LIST.value:
        return matched
    if policy == RestrictionPolicy.DISALLOW_LIST.value:
        return not matched
    # Invalid policy value
    return False


def _prepare(value: str, restrictions: Iterable[str], ignore_case: bool):
    restrictions = list(restrictions or [])
    if ignore_case:
        return value.lower(), [r.lower() for r in restrictions]
    return value, restrictions


class RestrictionEngine:
    """Evaluates the ``security.extensions`` and ``security.patterns`` policies."""

    def __init__(self, extensions: PolicyConfig, patterns: PolicyConfig):
        self.extensions = extensions
        self.patterns = patterns

    def is_allowed_extension(self, path: str, is_dir: bool = False) -> bool:
        if is_dir:
            return True
        ext, restrictions = _prepare(extension(path), self.extensions.restrictions, self.extensions.ignore_case)
        return _apply_policy(self.extensions.policy, ext in restrictions)

    def is_allowed_pattern(self, original_path: str) -> bool:
        """Match the path of the original item (never a thumbnail path) against the glob list."""
        path, restrictions = _prepare(original_path, self.patterns.restrictions, self.patterns.ignore_case)
        matched = any(fnmatchcase(path, pattern) for pattern in restrictions)
        return _apply_policy(self.patterns.policy, matched)

    def is_unrestricted(self, path: str, original_path: str, is_dir: bool) -> bool:
        if not is_dir and not self.is_allowed_extension(path):
            return False
        return self.is_allowed_pattern(original_path)

