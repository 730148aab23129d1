from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional


class EventKind(str, Enum):
    IMPRESSION = "impression"
    PLAY_START = "play_start"
    PLAY_3S = "play_3s"
    PLAY_15S = "play_15s"
    COMPLETE = "complete"
    REPLAY = "replay"
    LIKE = "like"
    SAVE = "save"
    FOLLOW = "follow"
    CTA_CLICK = "cta_click"
    SKIP = "skip"
    SHARE = "share"
    ALLOCATION = "allocation"  # written by the allocator only


class TrackableKind(str, Enum):
    """Event kinds a client may submit to the tracking endpoint."""

    IMPRESSION = "impression"
    PLAY_START = "play_start"
    PLAY_3S = "play_3s"
    PLAY_15S = "play_15s"
    COMPLETE = "complete"
    REPLAY = "replay"
    LIKE = "like"
    SAVE = "save"
    FOLLOW = "follow"
    CTA_CLICK = "cta_click"
    SKIP = "skip"
    SHARE = "share"


class MetricName(str, Enum):
    COMPLETION_RATE = "completion_rate"
    ENGAGEMENT_SCORE = "engagement_score"
    CTA_CLICK_RATE = "cta_click_rate"


class Rail(str, Enum):
    FOR_YOU = "for_you"
    NEW_THIS_WEEK = "new_this_week"
    FOLLOWING = "following"
    UNDERGROUND = "underground"


@dataclass(frozen=True)
class EngagementEvent:
    id: str
    user_id: Optional[str]
    content_id: str
    variant_id: Optional[str]
    event_kind: EventKind
    ms_played: Optional[int]
    session_id: Optional[str]
    created_at: float


@dataclass
class Variant:
    id: str
    parent_content_id: str
    label: str
    is_active: bool
    created_at: int


@dataclass
class ABTest:
    id: str
    content_id: str
    variant_a_id: str
    variant_b_id: str
    metric_name: MetricName
    test_duration_days: int
    started_at: int
    concluded_at: Optional[int]
    sample_size_a: int
    sample_size_b: int
    winner_id: Optional[str]
    confidence_score: Optional[float]

    @property
    def is_running(self) -> bool:
        return self.concluded_at is None

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "content_id": self.content_id,
            "variant_a_id": self.variant_a_id,
            "variant_b_id": self.variant_b_id,
            "metric_name": self.metric_name.value,
            "test_duration_days": self.test_duration_days,
            "started_at": self.started_at,
            "concluded_at": self.concluded_at,
            "sample_size_a": self.sample_size_a,
            "sample_size_b": self.sample_size_b,
            "winner_id": self.winner_id,
            "confidence_score": self.confidence_score,
        }


@dataclass
class SnippetSummary:
    id: str
    title: str
    genre: Optional[str]
    artist_id: str
    artist_name: str
    audio_url: Optional[str]
    cover_image_url: Optional[str]
    views: int
    likes: int
    created_at: int
    stats: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "title": self.title,
            "genre": self.genre,
            "artist_id": self.artist_id,
            "artist_name": self.artist_name,
            "audio_url": self.audio_url,
            "cover_image_url": self.cover_image_url,
            "views": self.views,
            "likes": self.likes,
            "created_at": self.created_at,
            "stats": self.stats,
        }


def ab_test_from_row(r) -> ABTest:
    return ABTest(
        id=str(r["id"]),
        content_id=str(r["snippet_id"]),
        variant_a_id=str(r["variant_a_id"]),
        variant_b_id=str(r["variant_b_id"]),
        metric_name=MetricName(r["metric_name"]),
        test_duration_days=int(r["test_duration_days"]),
        started_at=int(r["started_at"]),
        concluded_at=int(r["concluded_at"]) if r["concluded_at"] is not None else None,
        sample_size_a=int(r["sample_size_a"] or 0),
        sample_size_b=int(r["sample_size_b"] or 0),
        winner_id=r["winner_id"],
        confidence_score=float(r["confidence_score"]) if r["confidence_score"] is not None else None,
    )
