#!/usr/bin/env python3
import argparse
import json
import time

from backend.app.config import settings
from backend.app.db import connect, init_db
from backend.engagement.rollups import refresh_trending_scores


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--window-hours", type=int, default=settings.trending_window_hours)
    ap.add_argument("--half-life-hours", type=float, default=settings.trending_half_life_hours)
    ap.add_argument("--top", type=int, default=10, help="How many rows to print after the refresh")
    args = ap.parse_args()

    conn = connect()
    init_db(conn)

    n = refresh_trending_scores(
        conn,
        now=time.time(),
        window_hours=args.window_hours,
        half_life_hours=args.half_life_hours,
    )

    rows = conn.execute(
        """
        SELECT t.snippet_id, s.title, t.score, t.event_count
        FROM snippet_trending_scores t
        JOIN snippets s ON s.id = t.snippet_id
        ORDER BY t.score DESC
        LIMIT ?
        """,
        (args.top,),
    ).fetchall()
    conn.close()

    print(json.dumps({"refreshed": n, "top": [dict(r) for r in rows]}, indent=2))


if __name__ == "__main__":
    main()
