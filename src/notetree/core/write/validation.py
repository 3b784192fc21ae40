"""Local checks run before any request reaches the store."""

from notetree.config import ILLEGAL_TITLE_CHARS, MAX_TITLE_LENGTH
from notetree.core.store.node_store import NodeStore
from notetree.errors import ValidationError


def validate_title(title: str) -> str:
    """Return the cleaned title, or raise ValidationError.

    Titles may not be blank, may not contain any of ``\\ / : * ? " < > |``
    and are limited to MAX_TITLE_LENGTH characters.
    """
    cleaned = title.strip()
    if not cleaned:
        msg = "Name cannot be empty"
        raise ValidationError(msg)
    bad = sorted({c for c in cleaned if c in ILLEGAL_TITLE_CHARS})
    if bad:
        msg = f"Name cannot contain {' '.join(bad)}"
        raise ValidationError(msg)
    if len(cleaned) > MAX_TITLE_LENGTH:
        msg = f"Name is too long (at most {MAX_TITLE_LENGTH} characters)"
        raise ValidationError(msg)
    return cleaned


def ensure_unique_folder_title(
    store: NodeStore,
    *,
    parent_id: str,
    title: str,
    is_folder: bool,
    exclude_id: str | None = None,
) -> None:
    """Raise if a sibling folder under ``parent_id`` already uses ``title``.

    Only folders are checked; documents may share names.
    """
    if not is_folder:
        return
    if title in store.sibling_folder_titles(parent_id, exclude_id=exclude_id):
        msg = f"A folder named {title!r} already exists here"
        raise ValidationError(msg)
