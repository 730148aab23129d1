from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional
import logging
import sqlite3
import uuid

from backend.app.errors import AuthError, InvalidInput, NotFoundError, PersistenceError
from backend.engagement.dedup import DEDUPED, THROTTLED, Deduplicator
from backend.engagement.models import EngagementEvent, EventKind

logger = logging.getLogger(__name__)


@dataclass
class TrackResult:
    persisted: bool
    reason: Optional[str] = None
    event_id: Optional[str] = None

    def to_response(self) -> Dict[str, object]:
        out: Dict[str, object] = {"ok": True}
        if self.reason == DEDUPED:
            out["deduped"] = True
        elif self.reason == THROTTLED:
            out["throttled"] = True
        return out


def insert_event(conn: sqlite3.Connection, event: EngagementEvent) -> None:
    """Append one row to engagement_events. Events are never updated or deleted."""
    conn.execute(
        """
        INSERT INTO engagement_events(id, user_id, snippet_id, variant_id, event_type, ms_played, session_id, created_at)
        VALUES(?,?,?,?,?,?,?,?)
        """,
        (
            event.id,
            event.user_id,
            event.content_id,
            event.variant_id,
            event.event_kind.value,
            event.ms_played,
            event.session_id,
            event.created_at,
        ),
    )
    conn.commit()


def _ensure_references(conn: sqlite3.Connection, content_id: str, variant_id: Optional[str]) -> None:
    snippet = conn.execute("SELECT id FROM snippets WHERE id = ?", (content_id,)).fetchone()
    if not snippet:
        raise NotFoundError("Snippet not found")

    if variant_id is None:
        return

    variant = conn.execute(
        "SELECT parent_snippet_id FROM snippet_variants WHERE id = ?",
        (variant_id,),
    ).fetchone()
    if not variant or str(variant["parent_snippet_id"]) != content_id:
        raise InvalidInput("variant_id is not a variant of this snippet")


def track_event(
    conn: sqlite3.Connection,
    deduplicator: Deduplicator,
    user_id: Optional[str],
    content_id: str,
    event_kind: EventKind,
    now: float,
    variant_id: Optional[str] = None,
    ms_played: Optional[int] = None,
    session_id: Optional[str] = None,
) -> TrackResult:
    """
    Validate and persist a single engagement event.

    Suppressed events (dedup/throttle) are acknowledged without a write.
    """
    if not user_id:
        raise AuthError("Unauthorized")

    kind = EventKind(event_kind)
    if kind == EventKind.ALLOCATION:
        raise InvalidInput("allocation events are recorded by the allocator")
    if ms_played is not None and ms_played < 0:
        raise InvalidInput("ms_played must be >= 0")

    try:
        _ensure_references(conn, content_id, variant_id)
    except sqlite3.Error as e:
        logger.exception("Reference lookup failed for snippet %s", content_id)
        raise PersistenceError() from e

    # the window only starts once the event is actually stored
    decision = deduplicator.check(user_id, content_id, kind, now)
    if not decision.accept:
        return TrackResult(persisted=False, reason=decision.reason)

    event = EngagementEvent(
        id=str(uuid.uuid4()),
        user_id=user_id,
        content_id=content_id,
        variant_id=variant_id,
        event_kind=kind,
        ms_played=ms_played,
        session_id=session_id,
        created_at=now,
    )

    try:
        insert_event(conn, event)
    except sqlite3.Error as e:
        logger.exception("Failed to insert %s event for snippet %s", kind.value, content_id)
        raise PersistenceError() from e

    try:
        deduplicator.mark_accepted(user_id, content_id, kind, now)
    except sqlite3.Error:
        logger.warning("Could not record dedup entry for %s on snippet %s", kind.value, content_id, exc_info=True)

    logger.info("Tracked %s for user %s, snippet %s", kind.value, user_id, content_id)
    return TrackResult(persisted=True, event_id=event.id)
