#!/usr/bin/env python3
import argparse
import random
import sqlite3
import time
import uuid

from backend.app.db import connect, init_db

GENRES = ["pop", "house", "hip-hop", "indie", "jazz", "drill"]

EVENT_MIX = [
    ("impression", 10),
    ("play_start", 6),
    ("play_3s", 5),
    ("play_15s", 3),
    ("complete", 2),
    ("like", 1),
    ("save", 1),
    ("share", 1),
    ("skip", 2),
]


def _id() -> str:
    return str(uuid.uuid4())


def seed_people(conn: sqlite3.Connection, n_listeners: int, n_artists: int) -> tuple[list[str], list[str]]:
    listeners = []
    for i in range(n_listeners):
        user_id = _id()
        conn.execute("INSERT INTO users(id, display_name) VALUES(?,?)", (user_id, f"listener{i}"))
        conn.execute("INSERT INTO auth_tokens(token, user_id) VALUES(?,?)", (f"listener{i}-token", user_id))
        listeners.append(user_id)

    artists = []
    for i in range(n_artists):
        user_id = _id()
        artist_id = _id()
        conn.execute("INSERT INTO users(id, display_name) VALUES(?,?)", (user_id, f"artist{i}"))
        conn.execute("INSERT INTO auth_tokens(token, user_id) VALUES(?,?)", (f"artist{i}-token", user_id))
        conn.execute(
            "INSERT INTO artists(id, user_id, artist_name) VALUES(?,?,?)",
            (artist_id, user_id, f"Artist {i}"),
        )
        artists.append(artist_id)

    return listeners, artists


def seed_snippets(conn: sqlite3.Connection, artists: list[str], per_artist: int, now: int, rnd: random.Random) -> list[str]:
    rows = []
    for artist_id in artists:
        for j in range(per_artist):
            age_days = rnd.uniform(0, 30)
            rows.append((
                _id(),
                artist_id,
                f"Snippet {j}",
                rnd.choice(GENRES),
                "approved",
                rnd.randint(0, 5000),
                int(now - age_days * 86400),
            ))
    conn.executemany(
        """
        INSERT INTO snippets(id, artist_id, title, genre, status, views, created_at)
        VALUES(?,?,?,?,?,?,?)
        """,
        rows,
    )
    return [r[0] for r in rows]


def seed_events(conn: sqlite3.Connection, listeners: list[str], snippets: list[str], n_events: int, now: int, rnd: random.Random) -> None:
    kinds = [k for k, _ in EVENT_MIX]
    weights = [w for _, w in EVENT_MIX]
    rows = []
    for _ in range(n_events):
        rows.append((
            _id(),
            rnd.choice(listeners),
            rnd.choice(snippets),
            rnd.choices(kinds, weights=weights)[0],
            now - rnd.uniform(0, 72 * 3600),
        ))
    conn.executemany(
        """
        INSERT INTO engagement_events(id, user_id, snippet_id, event_type, created_at)
        VALUES(?,?,?,?,?)
        """,
        rows,
    )


def seed_follows(conn: sqlite3.Connection, listeners: list[str], artists: list[str], rnd: random.Random) -> None:
    rows = []
    for user_id in listeners:
        for artist_id in rnd.sample(artists, k=min(3, len(artists))):
            rows.append((user_id, artist_id))
    conn.executemany("INSERT OR IGNORE INTO follows(follower_id, artist_id) VALUES(?,?)", rows)


def clear_tables(conn: sqlite3.Connection) -> None:
    # delete child tables first (due to foreign keys)
    for table in [
        "dedup_cache",
        "snippet_trending_scores",
        "ab_tests",
        "engagement_events",
        "snippet_variants",
        "follows",
        "snippets",
        "artists",
        "auth_tokens",
        "users",
    ]:
        conn.execute(f"DELETE FROM {table};")


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--listeners", type=int, default=50)
    ap.add_argument("--artists", type=int, default=10)
    ap.add_argument("--snippets-per-artist", type=int, default=5)
    ap.add_argument("--events", type=int, default=5000)
    ap.add_argument("--seed", type=int, default=42)
    ap.add_argument("--reset", action="store_true", help="Clear tables before seeding")
    args = ap.parse_args()

    rnd = random.Random(args.seed)
    now = int(time.time())

    conn = connect()
    init_db(conn)

    if args.reset:
        clear_tables(conn)

    listeners, artists = seed_people(conn, args.listeners, args.artists)
    snippets = seed_snippets(conn, artists, args.snippets_per_artist, now, rnd)
    seed_events(conn, listeners, snippets, args.events, now, rnd)
    seed_follows(conn, listeners, artists, rnd)

    conn.commit()
    conn.close()
    print(f"Seeded {len(listeners)} listeners, {len(artists)} artists, {len(snippets)} snippets, {args.events} events.")
    print("Tokens: listener0-token ... / artist0-token ...")


if __name__ == "__main__":
    main()
