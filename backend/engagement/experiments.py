"""Variant management and the A/B test lifecycle (start -> conclude).

A test compares exactly two variants of one snippet. It is written once
when started and updated once when concluded; concluding twice is refused.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional
import logging
import sqlite3
import string
import uuid

from backend.app.errors import (
    ConflictError,
    ForbiddenError,
    InvalidInput,
    NotFoundError,
    PersistenceError,
)
from backend.engagement.models import ABTest, MetricName, Variant, ab_test_from_row
from backend.engagement.significance import (
    VariantMetrics,
    compare_variants,
    compute_metric,
    pick_winner,
)

logger = logging.getLogger(__name__)

MAX_TEST_DURATION_DAYS = 90


@dataclass
class ConclusionResult:
    test_id: str
    metric_name: MetricName
    variant_a_id: str
    variant_b_id: str
    metrics_a: VariantMetrics
    metrics_b: VariantMetrics
    winner_id: Optional[str]
    p_value: float
    confidence: float
    is_significant: bool

    def to_response(self) -> Dict[str, object]:
        return {
            "test_id": self.test_id,
            "metric_name": self.metric_name.value,
            "variant_a": {
                "id": self.variant_a_id,
                "metric_value": self.metrics_a.value,
                "sample_size": self.metrics_a.sample_size,
            },
            "variant_b": {
                "id": self.variant_b_id,
                "metric_value": self.metrics_b.value,
                "sample_size": self.metrics_b.sample_size,
            },
            "winner_id": self.winner_id,
            "p_value": self.p_value,
            "confidence": self.confidence,
            "is_significant": self.is_significant,
        }


def _owned_snippet(conn: sqlite3.Connection, content_id: str, user_id: str) -> bool:
    row = conn.execute(
        """
        SELECT s.id
        FROM snippets s
        JOIN artists a ON a.id = s.artist_id
        WHERE s.id = ? AND a.user_id = ?
        """,
        (content_id, user_id),
    ).fetchone()
    return row is not None


def _variants_of(conn: sqlite3.Connection, content_id: str) -> List[Variant]:
    rows = conn.execute(
        """
        SELECT id, parent_snippet_id, label, is_active, created_at
        FROM snippet_variants
        WHERE parent_snippet_id = ?
        ORDER BY created_at ASC, id ASC
        """,
        (content_id,),
    ).fetchall()
    return [
        Variant(
            id=str(r["id"]),
            parent_content_id=str(r["parent_snippet_id"]),
            label=str(r["label"]),
            is_active=bool(r["is_active"]),
            created_at=int(r["created_at"]),
        )
        for r in rows
    ]


def _next_label(existing: List[Variant]) -> str:
    used = {v.label for v in existing}
    for letter in string.ascii_uppercase:
        if letter not in used:
            return letter
    return f"V{len(existing) + 1}"


def create_variant(
    conn: sqlite3.Connection,
    user_id: str,
    content_id: str,
    now: float,
    label: Optional[str] = None,
) -> Variant:
    if not _owned_snippet(conn, content_id, user_id):
        raise ForbiddenError("Content not found or unauthorized")

    existing = _variants_of(conn, content_id)
    label = (label or "").strip() or _next_label(existing)

    variant = Variant(
        id=str(uuid.uuid4()),
        parent_content_id=content_id,
        label=label,
        is_active=True,
        created_at=int(now),
    )
    conn.execute(
        """
        INSERT INTO snippet_variants(id, parent_snippet_id, label, is_active, created_at)
        VALUES(?,?,?,?,?)
        """,
        (variant.id, variant.parent_content_id, variant.label, 1, variant.created_at),
    )
    conn.commit()
    logger.info("Created variant %s (%s) for snippet %s", variant.label, variant.id, content_id)
    return variant


def deactivate_variant(conn: sqlite3.Connection, user_id: str, variant_id: str) -> Variant:
    row = conn.execute(
        """
        SELECT v.id, v.parent_snippet_id, v.label, v.is_active, v.created_at
        FROM snippet_variants v
        JOIN snippets s ON s.id = v.parent_snippet_id
        JOIN artists a ON a.id = s.artist_id
        WHERE v.id = ? AND a.user_id = ?
        """,
        (variant_id, user_id),
    ).fetchone()
    if not row:
        raise ForbiddenError("Variant not found or unauthorized")

    # deactivated, never deleted: old events still point at it
    conn.execute("UPDATE snippet_variants SET is_active = 0 WHERE id = ?", (variant_id,))
    conn.commit()
    logger.info("Deactivated variant %s of snippet %s", variant_id, row["parent_snippet_id"])
    return Variant(
        id=str(row["id"]),
        parent_content_id=str(row["parent_snippet_id"]),
        label=str(row["label"]),
        is_active=False,
        created_at=int(row["created_at"]),
    )


def start_test(
    conn: sqlite3.Connection,
    user_id: str,
    content_id: str,
    variant_a_id: Optional[str],
    variant_b_id: Optional[str],
    metric_name: MetricName,
    test_duration_days: int,
    now: float,
) -> ABTest:
    """Omitted variant ids default to the snippet's two oldest variants."""
    if not _owned_snippet(conn, content_id, user_id):
        raise ForbiddenError("Content not found or unauthorized")

    ordered = _variants_of(conn, content_id)
    if len(ordered) < 2:
        raise InvalidInput("At least 2 variants are needed to start an A/B test")
    variants = {v.id: v for v in ordered}
    variant_a_id = variant_a_id or ordered[0].id
    variant_b_id = variant_b_id or next(v.id for v in ordered if v.id != variant_a_id)
    if variant_a_id == variant_b_id:
        raise InvalidInput("variant_a_id and variant_b_id must differ")
    if variant_a_id not in variants or variant_b_id not in variants:
        raise InvalidInput("Both variants must belong to this snippet")
    if not (1 <= int(test_duration_days) <= MAX_TEST_DURATION_DAYS):
        raise InvalidInput(f"test_duration_days must be between 1 and {MAX_TEST_DURATION_DAYS}")

    test = ABTest(
        id=str(uuid.uuid4()),
        content_id=content_id,
        variant_a_id=variant_a_id,
        variant_b_id=variant_b_id,
        metric_name=MetricName(metric_name),
        test_duration_days=int(test_duration_days),
        started_at=int(now),
        concluded_at=None,
        sample_size_a=0,
        sample_size_b=0,
        winner_id=None,
        confidence_score=None,
    )

    try:
        conn.execute(
            """
            INSERT INTO ab_tests(id, snippet_id, variant_a_id, variant_b_id, metric_name, test_duration_days, started_at)
            VALUES(?,?,?,?,?,?,?)
            """,
            (
                test.id,
                test.content_id,
                test.variant_a_id,
                test.variant_b_id,
                test.metric_name.value,
                test.test_duration_days,
                test.started_at,
            ),
        )
        conn.commit()
    except sqlite3.IntegrityError:
        conn.rollback()
        # idx_ab_tests_one_running
        raise ConflictError("An A/B test is already running for this snippet") from None

    logger.info("Started A/B test %s on snippet %s (%s)", test.id, content_id, test.metric_name.value)
    return test


def _load_owned_test(conn: sqlite3.Connection, test_id: str, user_id: str) -> ABTest:
    row = conn.execute(
        """
        SELECT t.*
        FROM ab_tests t
        JOIN snippets s ON s.id = t.snippet_id
        JOIN artists a ON a.id = s.artist_id
        WHERE t.id = ? AND a.user_id = ?
        """,
        (test_id, user_id),
    ).fetchone()
    if not row:
        raise NotFoundError("Test not found or unauthorized")
    return ab_test_from_row(row)


def get_test(conn: sqlite3.Connection, user_id: str, test_id: str) -> ABTest:
    return _load_owned_test(conn, test_id, user_id)


def latest_test_for(conn: sqlite3.Connection, content_id: str) -> Optional[ABTest]:
    row = conn.execute(
        "SELECT * FROM ab_tests WHERE snippet_id = ? ORDER BY started_at DESC, id DESC LIMIT 1",
        (content_id,),
    ).fetchone()
    return ab_test_from_row(row) if row else None


def _variant_events(conn: sqlite3.Connection, variant_id: str) -> List[sqlite3.Row]:
    return conn.execute(
        "SELECT event_type, user_id FROM engagement_events WHERE variant_id = ?",
        (variant_id,),
    ).fetchall()


def conclude_test(conn: sqlite3.Connection, user_id: str, test_id: str, now: float) -> ConclusionResult:
    """
    Compute the metric for both variants, run the z-test and close the test.

    A concluded test is final: a second call gets ConflictError instead of
    overwriting a decision that may already have been acted on.
    """
    test = _load_owned_test(conn, test_id, user_id)
    if not test.is_running:
        raise ConflictError("Test already concluded")

    metric = test.metric_name
    metrics_a = compute_metric(_variant_events(conn, test.variant_a_id), metric)
    metrics_b = compute_metric(_variant_events(conn, test.variant_b_id), metric)

    significance = compare_variants(metrics_a, metrics_b, metric)
    winner_id = pick_winner(metrics_a, metrics_b, significance, test.variant_a_id, test.variant_b_id)

    try:
        cur = conn.execute(
            """
            UPDATE ab_tests
            SET sample_size_a = ?, sample_size_b = ?, winner_id = ?, confidence_score = ?, concluded_at = ?
            WHERE id = ? AND concluded_at IS NULL
            """,
            (
                metrics_a.sample_size,
                metrics_b.sample_size,
                winner_id,
                significance.confidence,
                int(now),
                test.id,
            ),
        )
        conn.commit()
    except sqlite3.Error as e:
        conn.rollback()
        logger.exception("Failed to store conclusion of A/B test %s", test.id)
        raise PersistenceError() from e

    if cur.rowcount == 0:
        # another request concluded it between our read and write
        raise ConflictError("Test already concluded")

    logger.info(
        "Concluded A/B test %s: winner=%s p=%.4f confidence=%.2f",
        test.id,
        winner_id,
        significance.p_value,
        significance.confidence,
    )

    return ConclusionResult(
        test_id=test.id,
        metric_name=metric,
        variant_a_id=test.variant_a_id,
        variant_b_id=test.variant_b_id,
        metrics_a=metrics_a,
        metrics_b=metrics_b,
        winner_id=winner_id,
        p_value=significance.p_value,
        confidence=significance.confidence,
        is_significant=significance.is_significant,
    )
