from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Tuple
import logging
import sqlite3

from backend.app.errors import AuthError, InvalidInput
from backend.engagement.models import Rail, SnippetSummary

logger = logging.getLogger(__name__)

MIN_LIMIT = 1
MAX_LIMIT = 50
DEFAULT_LIMIT = 20

_SUMMARY_COLUMNS = """
  s.id AS id,
  s.title AS title,
  s.genre AS genre,
  s.audio_url AS audio_url,
  s.cover_image_url AS cover_image_url,
  s.views AS views,
  s.likes AS likes,
  s.created_at AS created_at,
  a.id AS artist_id,
  a.artist_name AS artist_name
"""


def _to_summary(r: sqlite3.Row) -> SnippetSummary:
    stats: Dict[str, float] = {}
    if "score" in r.keys() and r["score"] is not None:
        stats["trending_score"] = float(r["score"])
    return SnippetSummary(
        id=str(r["id"]),
        title=str(r["title"]),
        genre=r["genre"],
        artist_id=str(r["artist_id"]),
        artist_name=str(r["artist_name"]),
        audio_url=r["audio_url"],
        cover_image_url=r["cover_image_url"],
        views=int(r["views"] or 0),
        likes=int(r["likes"] or 0),
        created_at=int(r["created_at"]),
        stats=stats,
    )


def _genre_clause(genre: Optional[str], params: List[object]) -> str:
    if not genre:
        return ""
    params.append(genre)
    return " AND s.genre = ?"


def _for_you(conn: sqlite3.Connection, pool: int, genre: Optional[str]) -> List[sqlite3.Row]:
    params: List[object] = []
    sql = f"""
        SELECT {_SUMMARY_COLUMNS}, t.score AS score
        FROM snippet_trending_scores t
        JOIN snippets s ON s.id = t.snippet_id
        JOIN artists a ON a.id = s.artist_id
        WHERE s.status = 'approved'
    """
    sql += _genre_clause(genre, params)
    sql += " ORDER BY t.score DESC, s.created_at DESC LIMIT ?"
    params.append(pool)
    return conn.execute(sql, tuple(params)).fetchall()


def _new_this_week(conn: sqlite3.Connection, pool: int, genre: Optional[str], since_ts: float) -> List[sqlite3.Row]:
    params: List[object] = [since_ts]
    sql = f"""
        SELECT {_SUMMARY_COLUMNS}
        FROM snippets s
        JOIN artists a ON a.id = s.artist_id
        WHERE s.status = 'approved' AND s.created_at >= ?
    """
    sql += _genre_clause(genre, params)
    sql += " ORDER BY s.created_at DESC LIMIT ?"
    params.append(pool)
    return conn.execute(sql, tuple(params)).fetchall()


def _following(conn: sqlite3.Connection, pool: int, genre: Optional[str], user_id: str) -> List[sqlite3.Row]:
    params: List[object] = [user_id]
    sql = f"""
        SELECT {_SUMMARY_COLUMNS}
        FROM snippets s
        JOIN artists a ON a.id = s.artist_id
        JOIN follows f ON f.artist_id = s.artist_id
        WHERE s.status = 'approved' AND f.follower_id = ?
    """
    sql += _genre_clause(genre, params)
    sql += " ORDER BY s.created_at DESC LIMIT ?"
    params.append(pool)
    return conn.execute(sql, tuple(params)).fetchall()


def _underground(
    conn: sqlite3.Connection,
    pool: int,
    genre: Optional[str],
    since_ts: float,
    view_threshold: int,
) -> List[sqlite3.Row]:
    params: List[object] = [since_ts, view_threshold]
    sql = f"""
        SELECT {_SUMMARY_COLUMNS}
        FROM snippets s
        JOIN artists a ON a.id = s.artist_id
        WHERE s.status = 'approved' AND (s.created_at >= ? OR s.views < ?)
    """
    sql += _genre_clause(genre, params)
    sql += " ORDER BY s.created_at DESC LIMIT ?"
    params.append(pool)
    return conn.execute(sql, tuple(params)).fetchall()


def apply_diversity_cap(
    candidates: Iterable[SnippetSummary],
    limit: int,
    max_per_creator: int = 2,
) -> List[SnippetSummary]:
    """Keep ranking order, at most 'max_per_creator' items per artist, stop at 'limit'."""
    accepted: List[SnippetSummary] = []
    per_creator: Dict[str, int] = {}

    for item in candidates:
        if len(accepted) >= limit:
            break
        count = per_creator.get(item.artist_id, 0)
        if count >= max_per_creator:
            continue
        accepted.append(item)
        per_creator[item.artist_id] = count + 1

    return accepted


def validate_rail_query(rail: str, limit: int) -> Tuple[Rail, int]:
    try:
        parsed = Rail(rail)
    except ValueError:
        raise InvalidInput(f"rail must be one of: {', '.join(r.value for r in Rail)}") from None
    if not (MIN_LIMIT <= int(limit) <= MAX_LIMIT):
        raise InvalidInput(f"limit must be between {MIN_LIMIT} and {MAX_LIMIT}")
    return parsed, int(limit)


def get_rail(
    conn: sqlite3.Connection,
    rail: Rail,
    now: float,
    limit: int = DEFAULT_LIMIT,
    genre: Optional[str] = None,
    user_id: Optional[str] = None,
    new_rail_days: int = 7,
    underground_view_threshold: int = 500,
    max_per_creator: int = 2,
    candidate_pool_factor: int = 5,
) -> List[SnippetSummary]:
    """
    Ranked candidates for one rail, then the per-creator cap.

    The pool is over-fetched ('limit * candidate_pool_factor') so the cap
    can still fill 'limit' slots when a few artists dominate the ranking.
    """
    rail, limit = validate_rail_query(rail, limit)
    pool = limit * max(1, candidate_pool_factor)
    since_ts = now - new_rail_days * 24 * 3600

    if rail == Rail.FOR_YOU:
        rows = _for_you(conn, pool, genre)
    elif rail == Rail.NEW_THIS_WEEK:
        rows = _new_this_week(conn, pool, genre, since_ts)
    elif rail == Rail.FOLLOWING:
        if not user_id:
            raise AuthError("Authentication required for following feed")
        rows = _following(conn, pool, genre, user_id)
    else:
        rows = _underground(conn, pool, genre, since_ts, underground_view_threshold)

    result = apply_diversity_cap((_to_summary(r) for r in rows), limit, max_per_creator)
    logger.info("Trending %s: returned %d snippets", rail.value, len(result))
    return result
