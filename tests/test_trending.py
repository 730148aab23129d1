from collections import Counter

import pytest

from backend.app.errors import AuthError, InvalidInput
from backend.engagement.models import Rail, SnippetSummary
from backend.engagement.rollups import decay_factor, refresh_trending_scores
from backend.engagement.trending import apply_diversity_cap, get_rail

from conftest import DAY, NOW, add_artist, add_event, add_snippet, add_user


def _summary(i: int, artist: str) -> SnippetSummary:
    return SnippetSummary(
        id=f"s{i}",
        title=f"t{i}",
        genre=None,
        artist_id=artist,
        artist_name=artist.upper(),
        audio_url=None,
        cover_image_url=None,
        views=0,
        likes=0,
        created_at=i,
    )


def test_diversity_cap_keeps_order_and_limits_per_creator():
    ranked = [_summary(i, a) for i, a in enumerate("aaabbbca")]
    out = apply_diversity_cap(ranked, limit=10)
    assert [s.id for s in out] == ["s0", "s1", "s3", "s4", "s6"]


def test_diversity_cap_stops_at_limit():
    ranked = [_summary(i, a) for i, a in enumerate("abcdefg")]
    assert len(apply_diversity_cap(ranked, limit=3)) == 3


def test_diversity_cap_may_return_fewer_than_limit():
    ranked = [_summary(i, "a") for i in range(10)]
    assert len(apply_diversity_cap(ranked, limit=5)) == 2


@pytest.fixture
def catalog(conn, world):
    """Three artists; 'prolific' has many fresh snippets."""
    prolific_user = add_user(conn, "prolific")
    prolific = add_artist(conn, prolific_user, "Prolific")
    fresh = [add_snippet(conn, prolific, f"p{i}", NOW - i * 3600, genre="house") for i in range(6)]
    old_popular = add_snippet(conn, world.other_artist, "classic", NOW - 30 * DAY, views=10_000)
    old_niche = add_snippet(conn, world.other_artist, "deep cut", NOW - 30 * DAY, views=20)
    pending = add_snippet(conn, world.other_artist, "pending", NOW - 3600, status="pending")
    return {
        "prolific": prolific,
        "fresh": fresh,
        "old_popular": old_popular,
        "old_niche": old_niche,
        "pending": pending,
    }


def test_new_this_week_newest_first_and_capped(conn, world, catalog):
    out = get_rail(conn, Rail.NEW_THIS_WEEK, NOW, limit=10)
    ids = [s.id for s in out]
    assert ids[:2] == catalog["fresh"][:2]
    assert world.snippet in ids
    assert catalog["old_popular"] not in ids
    assert catalog["pending"] not in ids
    assert max(Counter(s.artist_id for s in out).values()) <= 2
    assert all(s.artist_name for s in out)


def test_genre_filter(conn, world, catalog):
    out = get_rail(conn, Rail.NEW_THIS_WEEK, NOW, limit=10, genre="pop")
    assert [s.id for s in out] == [world.snippet]


def test_underground_is_new_or_low_views(conn, world, catalog):
    out = get_rail(conn, Rail.UNDERGROUND, NOW, limit=50)
    ids = {s.id for s in out}
    assert catalog["old_niche"] in ids
    assert catalog["old_popular"] not in ids
    assert world.snippet in ids


def test_following_requires_auth(conn, world, catalog):
    with pytest.raises(AuthError):
        get_rail(conn, Rail.FOLLOWING, NOW, user_id=None)


def test_following_only_followed_artists(conn, world, catalog):
    assert get_rail(conn, Rail.FOLLOWING, NOW, user_id=world.fan) == []

    conn.execute("INSERT INTO follows(follower_id, artist_id) VALUES(?,?)", (world.fan, catalog["prolific"]))
    conn.commit()
    out = get_rail(conn, Rail.FOLLOWING, NOW, user_id=world.fan)
    assert [s.id for s in out] == catalog["fresh"][:2]


def test_for_you_ranks_by_trending_score(conn, world, catalog):
    hot = catalog["old_niche"]
    warm = world.snippet
    for _ in range(5):
        add_event(conn, hot, "share", NOW - 600, user_id=world.fan)
    add_event(conn, warm, "play_start", NOW - 600, user_id=world.fan)
    # outside the 48h window
    add_event(conn, catalog["old_popular"], "share", NOW - 3 * DAY, user_id=world.fan)

    assert refresh_trending_scores(conn, NOW) == 2
    out = get_rail(conn, Rail.FOR_YOU, NOW)
    assert [s.id for s in out] == [hot, warm]
    assert out[0].stats["trending_score"] > out[1].stats["trending_score"]


def test_for_you_skips_negative_scores(conn, world, catalog):
    add_event(conn, world.snippet, "skip", NOW - 60, user_id=world.fan)
    assert refresh_trending_scores(conn, NOW) == 0
    assert get_rail(conn, Rail.FOR_YOU, NOW) == []


def test_decay_halves_every_half_life():
    assert decay_factor(0, 12) == 1.0
    assert decay_factor(12, 12) == pytest.approx(0.5)
    assert decay_factor(24, 12) == pytest.approx(0.25)


@pytest.mark.parametrize("limit", [0, 51, -3])
def test_limit_out_of_range(conn, world, limit):
    with pytest.raises(InvalidInput):
        get_rail(conn, Rail.NEW_THIS_WEEK, NOW, limit=limit)


def test_unknown_rail(conn, world):
    with pytest.raises(InvalidInput):
        get_rail(conn, "charts", NOW)
