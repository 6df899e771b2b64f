"""
Checks for user-supplied names and paths.

Used twice: when settings are loaded, so bad values fail before a run starts,
and again by the components that act on them.
"""

import re
from pathlib import Path

from .errors import ValidationError


PROTECTED_DIRS = ("wp-admin", "wp-includes")
PROTECTED_CONTENT_DIRS = ("plugins", "mu-plugins")

_BRANCH = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_\-/]*[a-zA-Z0-9]$|^[a-zA-Z0-9]$")
_FORBIDDEN = ("..", "//", "@{", "\\", " ", "~", "^", ":", "?", "*", "[", "\0")
_REPO_SEGMENT = re.compile(r"^[A-Za-z0-9_.\-]+$")


def is_valid_branch_name(branch: str) -> bool:
    if not branch or len(branch) > 255:
        return False
    if not _BRANCH.match(branch):
        return False
    if any(token in branch for token in _FORBIDDEN):
        return False
    return not branch.endswith(".lock")


def is_valid_repo_path(repo: str, nested: bool = False) -> bool:
    """``owner/name``; GitLab projects may sit in nested groups."""
    parts = repo.strip("/").split("/")
    if len(parts) < 2 or (len(parts) > 2 and not nested):
        return False
    return all(_REPO_SEGMENT.match(p) and p not in (".", "..") for p in parts)


def is_within(path: Path, root: Path) -> bool:
    try:
        path.relative_to(root)
        return True
    except ValueError:
        return False


def validate_pattern(pattern: str) -> str:
    pattern = pattern.strip()
    if ".." in pattern or pattern.startswith("/"):
        raise ValidationError(f"Exclude pattern must be relative to the output root: {pattern}")
    return pattern


def validate_include_path(raw: str, site_root: Path, content_dir: Path) -> Path:
    """Resolve an extra include and refuse it outside the site or inside protected dirs."""
    try:
        real = Path(raw).resolve(strict=True)
    except OSError:
        raise ValidationError(f"Path does not exist: {raw}") from None

    site_root = Path(site_root).resolve()
    content_dir = Path(content_dir).resolve()
    if not (is_within(real, site_root) or is_within(real, content_dir)):
        raise ValidationError(f"Path outside the site directory skipped: {raw}")

    protected = [site_root / name for name in PROTECTED_DIRS]
    protected += [content_dir / name for name in PROTECTED_CONTENT_DIRS]
    for directory in protected:
        if is_within(real, directory):
            raise ValidationError(f"Protected directory skipped: {raw}")
    return real
