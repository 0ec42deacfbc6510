"""Gallery reconciliation, filtering, and pagination helpers.

Storage backends hand back records with inconsistent timestamp encodings:
ISO strings with or without a ``Z``, epoch numbers, nothing at all. This
module turns any such listing into one canonical, deduplicated,
newest-first view so route handlers only deal with HTTP concerns.

Timestamp Fallback Chain
------------------------
For every record the first strategy that yields a valid instant wins:

1. the record's explicit ``created_at`` value (ISO-8601 string or epoch number)
2. an ISO-like timestamp embedded in the filename with hyphens in place of
   colons, e.g. ``generated_2026-10-19T07-20-01-123Z_1_1a2b3c4d.png``
3. a raw epoch embedded in the filename, e.g. ``image_1746707539328.png``
   (13 digits are milliseconds, 10 digits are seconds)
4. the backend-native modification time (``modified_at``)
5. epoch zero, so unresolvable records sink to the end

Timestamps without an offset are interpreted as UTC.

Ordering
--------
Descending by resolved timestamp; ties are broken by descending filename,
which keeps the order total and deterministic.
"""

from __future__ import annotations

import dataclasses
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable

from optemus.core.models import StoredImageRecord, format_timestamp

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_FILENAME_ISO = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})T(\d{2})-(\d{2})-(\d{2})(?:-(\d{1,6}))?"
)
_FILENAME_EPOCH = re.compile(r"_(\d{13}|\d{10})(?=\D|$)")

SORT_OPTIONS = ("newest", "oldest", "prompt")
FILTER_OPTIONS = ("all", "recent")


# ---------------------------------------------------------------------------
# Timestamp resolution.
# ---------------------------------------------------------------------------


def _from_epoch(value: float) -> datetime | None:
    # Values this large can only be milliseconds for any plausible date.
    seconds = value / 1000.0 if abs(value) >= 1e11 else value
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def parse_timestamp_value(value: Any) -> datetime | None:
    """Parse an explicit timestamp field.

    Args:
        value: ISO-8601 string, epoch number (seconds or milliseconds), or
            anything else.

    Returns:
        An aware UTC datetime, or ``None`` when the value is unusable.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return _from_epoch(float(value))
    if not isinstance(value, str) or not value.strip():
        return None

    text = value.strip()
    if text.isdigit():
        return _from_epoch(float(text))
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def timestamp_from_filename(filename: str | None) -> datetime | None:
    """Recover a ``YYYY-MM-DDTHH-MM-SS[-fff]`` timestamp embedded in a filename."""
    if not filename:
        return None
    match = _FILENAME_ISO.search(filename)
    if not match:
        return None
    year, month, day, hour, minute, second, fraction = match.groups()
    microsecond = int(fraction.ljust(6, "0")) if fraction else 0
    try:
        return datetime(
            int(year),
            int(month),
            int(day),
            int(hour),
            int(minute),
            int(second),
            microsecond,
            tzinfo=timezone.utc,
        )
    except ValueError:
        return None


def epoch_from_filename(filename: str | None) -> datetime | None:
    """Recover a raw epoch (``prefix_<epoch>``) embedded in a filename."""
    if not filename:
        return None
    match = _FILENAME_EPOCH.search(filename)
    if not match:
        return None
    return _from_epoch(float(match.group(1)))


def resolve_timestamp(record: StoredImageRecord) -> datetime:
    """Resolve the ordering key of a record through the fallback chain.

    Never raises; records with nothing usable resolve to :data:`EPOCH`.
    """
    resolved = (
        parse_timestamp_value(record.created_at)
        or timestamp_from_filename(record.filename)
        or epoch_from_filename(record.filename)
    )
    if resolved is None and record.modified_at is not None:
        resolved = _from_epoch(record.modified_at)
    if resolved is None:
        logger.debug(f"No usable timestamp for {record.filename}; using epoch zero")
        return EPOCH
    return resolved


# ---------------------------------------------------------------------------
# Reconciliation.
# ---------------------------------------------------------------------------


@dataclasses.dataclass(frozen=True)
class GalleryEntry:
    record: StoredImageRecord
    resolved_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return self.record.to_dict()


class GalleryReconciler:
    """Turn a raw backend listing into the canonical gallery view.

    The reconciler is stateless; a fresh view is computed for every
    listing request and never persisted.
    """

    def sort_key(self, entry: GalleryEntry) -> tuple[datetime, str]:
        return entry.resolved_at, entry.record.filename or ""

    def reconcile(self, records: Iterable[StoredImageRecord]) -> list[GalleryEntry]:
        """Resolve timestamps, sort newest-first and drop duplicate ids.

        Every record leaves with ``created_at`` rewritten to the resolved
        instant in ISO-8601 UTC form (``...Z``), whatever encoding the backend
        stored. When two records share an id, the one that sorts first
        (the newest) is kept.

        Args:
            records: Records from a single backend listing.

        Returns:
            Ordered list of :class:`GalleryEntry`.
        """
        entries: list[GalleryEntry] = []
        for record in records:
            resolved_at = resolve_timestamp(record)
            canonical = format_timestamp(resolved_at)
            if record.created_at != canonical:
                record = dataclasses.replace(record, created_at=canonical)
            entries.append(GalleryEntry(record=record, resolved_at=resolved_at))

        entries.sort(key=self.sort_key, reverse=True)

        seen: set[str] = set()
        unique: list[GalleryEntry] = []
        for entry in entries:
            if entry.record.id in seen:
                logger.debug(f"Dropping duplicate gallery record {entry.record.id}")
                continue
            seen.add(entry.record.id)
            unique.append(entry)
        return unique


# ---------------------------------------------------------------------------
# Query helpers.
# ---------------------------------------------------------------------------


def _matches_query(record: StoredImageRecord, query: str) -> bool:
    if query in (record.prompt or "").lower():
        return True
    return any(query in str(value).lower() for value in record.settings.values())


def filter_gallery_entries(
    entries: list[GalleryEntry],
    *,
    query: str | None = None,
    filter_by: str = "all",
    now: datetime | None = None,
) -> list[GalleryEntry]:
    """Apply the search and dropdown filters.

    Args:
        entries: Reconciled gallery entries.
        query: Case-insensitive substring matched against the prompt and
            setting values.
        filter_by: ``"all"`` or ``"recent"`` (the last 24 hours).
        now: Reference instant for ``"recent"``; defaults to the current time.

    Returns:
        Filtered entries in their original order.
    """
    filtered = entries

    if query and query.strip():
        needle = query.strip().lower()
        filtered = [entry for entry in filtered if _matches_query(entry.record, needle)]

    if filter_by == "recent":
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=1)
        filtered = [entry for entry in filtered if entry.resolved_at > cutoff]

    return filtered


def sort_gallery_entries(entries: list[GalleryEntry], sort: str = "newest") -> list[GalleryEntry]:
    """Re-order reconciled entries; ``newest`` keeps the reconciled order."""
    if sort == "oldest":
        return list(reversed(entries))
    if sort == "prompt":
        return sorted(entries, key=lambda entry: (entry.record.prompt or "").lower())
    return entries


@dataclasses.dataclass(frozen=True)
class GalleryPage:
    """One page of the gallery view plus the counts a pager needs."""

    entries: list[GalleryEntry]
    total: int
    page: int
    per_page: int
    pages: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "page": self.page,
            "per_page": self.per_page,
            "pages": self.pages,
            "images": [entry.to_dict() for entry in self.entries],
        }


def paginate_gallery_entries(entries: list[GalleryEntry], page: int, per_page: int) -> GalleryPage:
    """Slice reconciled entries into one page.

    An out-of-range ``page`` is pulled back to the nearest existing page, so
    a client still showing the last page after deleting its only image gets
    the new last page rather than an empty one. An empty gallery is one
    empty page.
    """
    full_pages, remainder = divmod(len(entries), per_page)
    pages = max(1, full_pages + (1 if remainder else 0))
    current = max(1, min(page, pages))
    offset = (current - 1) * per_page
    return GalleryPage(
        entries=entries[offset : offset + per_page],
        total=len(entries),
        page=current,
        per_page=per_page,
        pages=pages,
    )
