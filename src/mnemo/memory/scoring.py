"""Retrieval scoring: fused relevance, temporal decay, weighted final score.

    fused = w_dense * cosine + w_sparse * overlap
    base  = 1.2*fused + 0.2*time + 0.1*importance/10 + 0.1*min(1, access/100)
            + 0.1*relationship
    final = base * (1 + emotional_impact/10)
"""

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from mnemo.memory.base import MemoryFragment

FUSED_WEIGHT = 1.2
TIME_WEIGHT = 0.2
IMPORTANCE_WEIGHT = 0.1
ACCESS_WEIGHT = 0.1
RELATIONSHIP_WEIGHT = 0.1

ACCESS_SATURATION = 100
SECONDS_PER_DAY = 86_400


def cosine_similarity(a: list[float] | None, b: list[float] | None) -> float:
    """Cosine of two vectors; 0.0 when either is missing, empty or zero."""
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


def days_between(earlier: datetime, later: datetime) -> float:
    return max(0.0, (later - earlier).total_seconds() / SECONDS_PER_DAY)


def time_relevance(days_since_creation: float, decay_days: float = 30.0) -> float:
    """Linear decay from 1.0 at creation to 0.0 at decay_days, floored at 0."""
    if days_since_creation <= 0:
        return 1.0
    return max(0.0, 1.0 - days_since_creation / decay_days)


def fused_relevance(
    similarity: float, overlap: float, weights: tuple[float, float] = (0.7, 0.3)
) -> float:
    dense_weight, sparse_weight = weights
    return dense_weight * similarity + sparse_weight * overlap


def base_score(
    fused: float,
    time_rel: float,
    importance: float,
    access_count: int,
    relationship_strength: float = 0.0,
) -> float:
    importance_norm = importance / 10.0
    access_norm = min(1.0, access_count / ACCESS_SATURATION)
    return (
        FUSED_WEIGHT * fused
        + TIME_WEIGHT * time_rel
        + IMPORTANCE_WEIGHT * importance_norm
        + ACCESS_WEIGHT * access_norm
        + RELATIONSHIP_WEIGHT * relationship_strength
    )


def final_score(base: float, emotional_impact: float) -> float:
    return base * (1.0 + emotional_impact / 10.0)


@dataclass(frozen=True)
class ScoreBreakdown:
    """Every signal that went into a fragment's final score."""

    similarity: float
    sparse_overlap: float
    fused_relevance: float
    time_relevance: float
    importance_norm: float
    access_frequency_norm: float
    relationship_strength: float
    base_score: float
    final_score: float
    entity_match: bool = False


class RelationshipScorer(Protocol):
    """Affinity between the query context and a fragment, in [0, 1]."""

    def __call__(self, query: str, fragment: MemoryFragment) -> float: ...


def no_relationship(query: str, fragment: MemoryFragment) -> float:
    return 0.0


def score_fragment(
    fragment: MemoryFragment,
    similarity: float,
    overlap: float,
    now: datetime,
    relationship_strength: float = 0.0,
    weights: tuple[float, float] = (0.7, 0.3),
    decay_days: float = 30.0,
    entity_match: bool = False,
) -> ScoreBreakdown:
    """Score one candidate. Deterministic for fixed inputs."""
    fused = fused_relevance(similarity, overlap, weights)
    time_rel = time_relevance(days_between(fragment.timestamp, now), decay_days)
    base = base_score(
        fused, time_rel, fragment.importance, fragment.access_count, relationship_strength
    )
    return ScoreBreakdown(
        similarity=similarity,
        sparse_overlap=overlap,
        fused_relevance=fused,
        time_relevance=time_rel,
        importance_norm=fragment.importance / 10.0,
        access_frequency_norm=min(1.0, fragment.access_count / ACCESS_SATURATION),
        relationship_strength=relationship_strength,
        base_score=base,
        final_score=final_score(base, fragment.emotional_impact),
        entity_match=entity_match,
    )
