from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional
import hashlib
import logging
import random
import sqlite3
import uuid

from backend.engagement.ingest import insert_event
from backend.engagement.models import EngagementEvent, EventKind, Variant

logger = logging.getLogger(__name__)

ORIGINAL_LABEL = "original"


@dataclass
class Allocation:
    variant_id: Optional[str]
    label: str
    sticky: bool = False

    def to_response(self) -> Dict[str, object]:
        return {"variant_id": self.variant_id, "label": self.label}


def get_active_variants(conn: sqlite3.Connection, content_id: str) -> List[Variant]:
    rows = conn.execute(
        """
        SELECT id, parent_snippet_id, label, is_active, created_at
        FROM snippet_variants
        WHERE parent_snippet_id = ? AND is_active = 1
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


def _running_test(conn: sqlite3.Connection, content_id: str) -> Optional[sqlite3.Row]:
    return conn.execute(
        "SELECT id, variant_a_id, variant_b_id FROM ab_tests WHERE snippet_id = ? AND concluded_at IS NULL",
        (content_id,),
    ).fetchone()


def _test_arms(test: sqlite3.Row, variants: List[Variant]) -> List[Variant]:
    # fixed (a, b) order so the bucket count does not follow the variant list
    by_id = {v.id: v for v in variants}
    return [by_id[str(vid)] for vid in (test["variant_a_id"], test["variant_b_id"]) if str(vid) in by_id]


def sticky_index(user_id: str, content_id: str, test_id: str, n: int) -> int:
    """Same (user, snippet, test) always maps to the same bucket in [0, n)."""
    key = f"{user_id}:{content_id}:{test_id}"
    hash_val = int(hashlib.sha256(key.encode()).hexdigest(), 16)
    return hash_val % n


def allocate_variant(
    conn: sqlite3.Connection,
    content_id: str,
    user_id: Optional[str],
    now: float,
    rng: Optional[random.Random] = None,
    sticky: bool = True,
) -> Allocation:
    """
    Pick the variant (or the original) a viewer is served.

    - no active variants -> original
    - signed-in viewer + running test -> hashed over the test's two arms,
      stable for the test's lifetime whatever other variants come and go
    - a deactivated arm leaves its viewers on the other one
    - otherwise uniform random over the active variants
    Signed-in viewers also get an 'allocation' event, best-effort.
    """
    variants = get_active_variants(conn, content_id)
    if not variants:
        logger.info("No active variants for snippet %s", content_id)
        return Allocation(variant_id=None, label=ORIGINAL_LABEL)

    test = _running_test(conn, content_id) if (sticky and user_id) else None
    arms = _test_arms(test, variants) if test is not None else []
    if arms:
        chosen = arms[sticky_index(user_id, content_id, str(test["id"]), len(arms))]
        is_sticky = True
    else:
        chosen = (rng or random).choice(variants)
        is_sticky = False

    if user_id:
        event = EngagementEvent(
            id=str(uuid.uuid4()),
            user_id=user_id,
            content_id=content_id,
            variant_id=chosen.id,
            event_kind=EventKind.ALLOCATION,
            ms_played=None,
            session_id=None,
            created_at=now,
        )
        try:
            insert_event(conn, event)
        except sqlite3.Error:
            # the allocation itself still stands
            logger.exception("Failed to log allocation of variant %s for snippet %s", chosen.id, content_id)

    logger.info("Allocated variant %s (%s) for snippet %s", chosen.label, chosen.id, content_id)
    return Allocation(variant_id=chosen.id, label=chosen.label, sticky=is_sticky)
