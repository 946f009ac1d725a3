"""Filesystem sandbox utilities for static asset resolution."""

from pathlib import Path

INDEX_DOCUMENT = "index.html"


class ForbiddenPath(Exception):
    """Raised when a requested path escapes the assets root."""


def resolve_asset_path(assets_root: str, request_path: str) -> Path:
    """Map a request path onto a file below ``assets_root``.

    Directories resolve to their ``index.html``; the returned path may not
    exist. Traversal outside the root raises ``ForbiddenPath``.
    """
    if "\x00" in request_path:
        raise ForbiddenPath

    root = Path(assets_root).resolve()
    relative_part = request_path.lstrip("/")
    if ".." in Path(relative_part).parts:
        raise ForbiddenPath

    target = (root / relative_part).resolve()
    if not (target == root or root in target.parents):
        raise ForbiddenPath

    if target.is_dir():
        target = target / INDEX_DOCUMENT
    return target
