"""
Shared fixtures: a throwaway SQLite database seeded with a few users,
artists and snippets, a controllable clock and a seeded RNG on app.state.
"""

import random
import uuid
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from backend.app.config import settings
from backend.app.db import connect, init_db
from backend.app.main import app

NOW = 1_760_000_000.0
DAY = 24 * 3600


class FakeClock:
    def __init__(self, now: float = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def new_id() -> str:
    return str(uuid.uuid4())


def add_user(conn, display_name: str, token: str | None = None) -> str:
    user_id = new_id()
    conn.execute("INSERT INTO users(id, display_name) VALUES(?,?)", (user_id, display_name))
    if token:
        conn.execute("INSERT INTO auth_tokens(token, user_id) VALUES(?,?)", (token, user_id))
    conn.commit()
    return user_id


def add_artist(conn, user_id: str, name: str) -> str:
    artist_id = new_id()
    conn.execute("INSERT INTO artists(id, user_id, artist_name) VALUES(?,?,?)", (artist_id, user_id, name))
    conn.commit()
    return artist_id


def add_snippet(
    conn,
    artist_id: str,
    title: str,
    created_at: float,
    genre: str = "pop",
    views: int = 0,
    status: str = "approved",
) -> str:
    snippet_id = new_id()
    conn.execute(
        """
        INSERT INTO snippets(id, artist_id, title, genre, status, views, created_at)
        VALUES(?,?,?,?,?,?,?)
        """,
        (snippet_id, artist_id, title, genre, status, views, int(created_at)),
    )
    conn.commit()
    return snippet_id


def add_variant(conn, snippet_id: str, label: str, created_at: float, is_active: bool = True) -> str:
    variant_id = new_id()
    conn.execute(
        """
        INSERT INTO snippet_variants(id, parent_snippet_id, label, is_active, created_at)
        VALUES(?,?,?,?,?)
        """,
        (variant_id, snippet_id, label, 1 if is_active else 0, int(created_at)),
    )
    conn.commit()
    return variant_id


def add_event(conn, snippet_id: str, event_type: str, created_at: float, user_id=None, variant_id=None, ms_played=None):
    conn.execute(
        """
        INSERT INTO engagement_events(id, user_id, snippet_id, variant_id, event_type, ms_played, created_at)
        VALUES(?,?,?,?,?,?,?)
        """,
        (new_id(), user_id, snippet_id, variant_id, event_type, ms_played, created_at),
    )
    conn.commit()


def count_events(conn, snippet_id: str, event_type: str | None = None) -> int:
    sql = "SELECT COUNT(*) AS c FROM engagement_events WHERE snippet_id = ?"
    params = [snippet_id]
    if event_type:
        sql += " AND event_type = ?"
        params.append(event_type)
    return int(conn.execute(sql, tuple(params)).fetchone()["c"])


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    path = tmp_path / "engagement.db"
    monkeypatch.setattr(settings, "database_url", f"sqlite:///{path}")
    monkeypatch.setattr(settings, "dedup_sweep_interval_seconds", 0)
    monkeypatch.setattr(settings, "trending_refresh_interval_seconds", 0)
    return str(path)


@pytest.fixture
def conn(db_path):
    c = connect(db_path)
    init_db(c)
    yield c
    c.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def world(conn):
    """Two artists, one fan, one snippet owned by artist one."""
    fan = add_user(conn, "fan", token="fan-token")
    owner = add_user(conn, "owner", token="owner-token")
    other = add_user(conn, "other", token="other-token")
    artist = add_artist(conn, owner, "The Owners")
    other_artist = add_artist(conn, other, "Someone Else")
    snippet = add_snippet(conn, artist, "Hook", created_at=NOW - DAY)
    return SimpleNamespace(
        fan=fan,
        owner=owner,
        other=other,
        artist=artist,
        other_artist=other_artist,
        snippet=snippet,
    )


@pytest.fixture
def client(db_path, clock):
    with TestClient(app) as c:
        app.state.clock = clock
        app.state.rng = random.Random(1234)
        yield c


def auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}
