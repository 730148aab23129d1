SCHEMA_SQL = """
PRAGMA foreign_keys = ON;

CREATE TABLE IF NOT EXISTS users (
  id           TEXT PRIMARY KEY,               -- UUID string
  display_name TEXT,
  created_at   INTEGER NOT NULL DEFAULT (CAST(strftime('%s','now') AS INTEGER))
);

-- bearer credential -> user identity

CREATE TABLE IF NOT EXISTS auth_tokens (
  token   TEXT PRIMARY KEY,
  user_id TEXT NOT NULL,
  FOREIGN KEY (user_id) REFERENCES users(id)
);

CREATE TABLE IF NOT EXISTS artists (
  id          TEXT PRIMARY KEY,
  user_id     TEXT NOT NULL UNIQUE,
  artist_name TEXT NOT NULL,
  FOREIGN KEY (user_id) REFERENCES users(id)
);

CREATE TABLE IF NOT EXISTS follows (
  follower_id TEXT NOT NULL,
  artist_id   TEXT NOT NULL,
  created_at  INTEGER NOT NULL DEFAULT (CAST(strftime('%s','now') AS INTEGER)),
  PRIMARY KEY (follower_id, artist_id),
  FOREIGN KEY (follower_id) REFERENCES users(id),
  FOREIGN KEY (artist_id) REFERENCES artists(id)
);

CREATE TABLE IF NOT EXISTS snippets (
  id              TEXT PRIMARY KEY,
  artist_id       TEXT NOT NULL,
  title           TEXT NOT NULL,
  genre           TEXT,
  status          TEXT NOT NULL DEFAULT 'approved',  -- 'pending' | 'approved' | 'rejected'
  audio_url       TEXT,
  cover_image_url TEXT,
  views           INTEGER NOT NULL DEFAULT 0,
  likes           INTEGER NOT NULL DEFAULT 0,
  created_at      INTEGER NOT NULL,                  -- unix timestamp
  FOREIGN KEY (artist_id) REFERENCES artists(id)
);

CREATE INDEX IF NOT EXISTS idx_snippets_status_created
ON snippets(status, created_at);

CREATE INDEX IF NOT EXISTS idx_snippets_artist
ON snippets(artist_id);

-- alternate renderings of a snippet, deactivated instead of deleted

CREATE TABLE IF NOT EXISTS snippet_variants (
  id                TEXT PRIMARY KEY,
  parent_snippet_id TEXT NOT NULL,
  label             TEXT NOT NULL,
  is_active         INTEGER NOT NULL DEFAULT 1,
  created_at        INTEGER NOT NULL,
  FOREIGN KEY (parent_snippet_id) REFERENCES snippets(id)
);

CREATE INDEX IF NOT EXISTS idx_snippet_variants_parent
ON snippet_variants(parent_snippet_id, is_active);

-- append-only engagement log

CREATE TABLE IF NOT EXISTS engagement_events (
  id         TEXT PRIMARY KEY,
  user_id    TEXT,                            -- NULL for anonymous
  snippet_id TEXT NOT NULL,
  variant_id TEXT,                            -- NULL means the original snippet
  event_type TEXT NOT NULL,
  ms_played  INTEGER,
  session_id TEXT,
  created_at REAL NOT NULL,                   -- unix timestamp
  FOREIGN KEY (snippet_id) REFERENCES snippets(id),
  FOREIGN KEY (variant_id) REFERENCES snippet_variants(id)
);

CREATE INDEX IF NOT EXISTS idx_engagement_events_snippet_ts
ON engagement_events(snippet_id, created_at);

CREATE INDEX IF NOT EXISTS idx_engagement_events_variant
ON engagement_events(variant_id);

CREATE INDEX IF NOT EXISTS idx_engagement_events_ts
ON engagement_events(created_at);

CREATE TABLE IF NOT EXISTS ab_tests (
  id                 TEXT PRIMARY KEY,
  snippet_id         TEXT NOT NULL,
  variant_a_id       TEXT NOT NULL,
  variant_b_id       TEXT NOT NULL,
  metric_name        TEXT NOT NULL,           -- 'completion_rate' | 'engagement_score' | 'cta_click_rate'
  test_duration_days INTEGER NOT NULL,
  started_at         INTEGER NOT NULL,
  concluded_at       INTEGER,                 -- NULL while running
  sample_size_a      INTEGER NOT NULL DEFAULT 0,
  sample_size_b      INTEGER NOT NULL DEFAULT 0,
  winner_id          TEXT,
  confidence_score   REAL,
  FOREIGN KEY (snippet_id) REFERENCES snippets(id),
  FOREIGN KEY (variant_a_id) REFERENCES snippet_variants(id),
  FOREIGN KEY (variant_b_id) REFERENCES snippet_variants(id)
);

-- at most one running test per snippet
CREATE UNIQUE INDEX IF NOT EXISTS idx_ab_tests_one_running
ON ab_tests(snippet_id) WHERE concluded_at IS NULL;

-- rollup read by the for_you rail

CREATE TABLE IF NOT EXISTS snippet_trending_scores (
  snippet_id   TEXT PRIMARY KEY,
  score        REAL NOT NULL,
  event_count  INTEGER NOT NULL,
  refreshed_at REAL NOT NULL,
  FOREIGN KEY (snippet_id) REFERENCES snippets(id)
);

CREATE INDEX IF NOT EXISTS idx_snippet_trending_scores_score
ON snippet_trending_scores(score);

-- shared dedup store (dedup_backend=sqlite)

CREATE TABLE IF NOT EXISTS dedup_cache (
  dedup_key TEXT PRIMARY KEY,
  last_seen REAL NOT NULL
);
"""
