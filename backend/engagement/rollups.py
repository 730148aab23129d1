from __future__ import annotations

from typing import Dict
import logging
import math
import sqlite3

logger = logging.getLogger(__name__)

# per-event contribution to a snippet's trending score
EVENT_WEIGHTS: Dict[str, float] = {
    "impression": 0.1,
    "play_start": 1.0,
    "play_3s": 1.0,
    "play_15s": 2.0,
    "complete": 3.0,
    "replay": 2.0,
    "like": 3.0,
    "save": 4.0,
    "share": 5.0,
    "follow": 4.0,
    "cta_click": 2.0,
    "skip": -1.0,
    "allocation": 0.0,
}


def decay_factor(age_hours: float, half_life_hours: float) -> float:
    if half_life_hours <= 0:
        return 1.0
    return math.pow(0.5, max(age_hours, 0.0) / half_life_hours)


def refresh_trending_scores(
    conn: sqlite3.Connection,
    now: float,
    window_hours: int = 48,
    half_life_hours: float = 12.0,
) -> int:
    """
      decayed trending score per snippet:
    - only events inside the last 'window_hours'
    - each event adds weight(kind) * 0.5 ** (age_hours / half_life_hours)
    - snippets with score <= 0 are left out

    Rebuilds snippet_trending_scores in one transaction; returns the row count.
    """
    start_ts = now - window_hours * 3600

    rows = conn.execute(
        """
        SELECT snippet_id, event_type, created_at
        FROM engagement_events
        WHERE created_at >= ? AND created_at <= ?
        """,
        (start_ts, now),
    ).fetchall()

    scores: Dict[str, float] = {}
    counts: Dict[str, int] = {}

    for r in rows:
        snippet_id = str(r["snippet_id"])
        w = EVENT_WEIGHTS.get(str(r["event_type"]), 0.0)
        age_hours = (now - float(r["created_at"])) / 3600.0
        scores[snippet_id] = scores.get(snippet_id, 0.0) + w * decay_factor(age_hours, half_life_hours)
        counts[snippet_id] = counts.get(snippet_id, 0) + 1

    out = [(sid, score, counts[sid], now) for sid, score in scores.items() if score > 0.0]

    with conn:
        conn.execute("DELETE FROM snippet_trending_scores")
        conn.executemany(
            """
            INSERT INTO snippet_trending_scores(snippet_id, score, event_count, refreshed_at)
            VALUES(?,?,?,?)
            """,
            out,
        )

    logger.info("Refreshed trending scores: %d snippets from %d events", len(out), len(rows))
    return len(out)
