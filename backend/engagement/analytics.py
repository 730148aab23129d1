from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List
import sqlite3

from backend.app.errors import ForbiddenError
from backend.engagement.experiments import latest_test_for

# funnel field -> event_type
FUNNEL_STEPS = {
    "impressions": "impression",
    "play_starts": "play_start",
    "retention_3s": "play_3s",
    "retention_15s": "play_15s",
    "completions": "complete",
    "likes": "like",
    "shares": "share",
    "saves": "save",
    "replays": "replay",
}

# the per-day timeline only tracks the top of the funnel
TIMELINE_STEPS = ("impressions", "play_starts", "retention_3s", "retention_15s", "completions", "likes", "shares")


def _utc_date(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d")


def group_events_by_day(events: List[sqlite3.Row]) -> List[Dict[str, object]]:
    step_for_kind = {kind: step for step, kind in FUNNEL_STEPS.items() if step in TIMELINE_STEPS}
    grouped: Dict[str, Dict[str, object]] = {}

    for e in events:
        day = _utc_date(float(e["created_at"]))
        bucket = grouped.get(day)
        if bucket is None:
            bucket = {"date": day}
            for step in TIMELINE_STEPS:
                bucket[step] = 0
            grouped[day] = bucket

        step = step_for_kind.get(str(e["event_type"]))
        if step is not None:
            bucket[step] = int(bucket[step]) + 1

    return [grouped[d] for d in sorted(grouped)]


def snippet_analytics(conn: sqlite3.Connection, user_id: str, content_id: str) -> Dict[str, object]:
    """Engagement funnel for one snippet, visible to its artist only."""
    snippet = conn.execute(
        """
        SELECT s.id, s.title, s.genre, s.status, s.views, s.likes, s.created_at
        FROM snippets s
        JOIN artists a ON a.id = s.artist_id
        WHERE s.id = ? AND a.user_id = ?
        """,
        (content_id, user_id),
    ).fetchone()
    if not snippet:
        raise ForbiddenError("Snippet not found or unauthorized")

    events = conn.execute(
        """
        SELECT event_type, created_at, ms_played, user_id
        FROM engagement_events
        WHERE snippet_id = ?
        ORDER BY created_at ASC
        """,
        (content_id,),
    ).fetchall()

    counts: Dict[str, int] = {}
    for e in events:
        kind = str(e["event_type"])
        counts[kind] = counts.get(kind, 0) + 1

    funnel = {step: counts.get(kind, 0) for step, kind in FUNNEL_STEPS.items()}

    unique_listeners = len({e["user_id"] for e in events if e["user_id"] is not None})

    played = [int(e["ms_played"]) for e in events if e["ms_played"]]
    avg_watch_time = sum(played) / len(played) if played else 0.0

    ab_test = latest_test_for(conn, content_id)

    return {
        "snippet": dict(snippet),
        "funnel": funnel,
        "unique_listeners": unique_listeners,
        "avg_watch_time": avg_watch_time,
        "timeline": group_events_by_day(events),
        "ab_test": ab_test.to_dict() if ab_test else None,
    }
