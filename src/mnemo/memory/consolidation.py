"""Consolidation scheduler - rescoring, tier migration and eviction.

Each pass over a persona:
1. Recompute importance and refine emotional impact per fragment
2. Advance tiers by age (WORKING -> SHORT_TERM -> LONG_TERM)
3. Evict lowest importance x recency LONG_TERM fragments beyond quota

Every fragment write is an independent compare-and-set, so a pass can be
cancelled or re-run at any point without rollback.
"""

import asyncio
import math
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from mnemo.core.config import Settings, get_settings
from mnemo.core.errors import ConsolidationFragmentError, StoreUnavailable
from mnemo.core.logging import get_logger
from mnemo.memory.base import (
    EMOTION_MAX,
    EMOTION_MIN,
    IMPORTANCE_MAX,
    IMPORTANCE_MIN,
    CasOutcome,
    MemoryFragment,
    MemoryStore,
    MemoryTier,
    update_with_retry,
)
from mnemo.memory.persona import PersonaRegistry
from mnemo.memory.scoring import days_between, time_relevance

logger = get_logger("memory.consolidation")


@dataclass(frozen=True)
class ImportancePolicy:
    """Importance decay/boost and emotional refinement.

    importance' = clamp(prior * 2^(-idle_h / half_life_h) + boost * ln(1 + new_accesses))
    emotion'    = emotion * 2^(-elapsed_d / emotional_half_life_d)

    idle_h counts from the latest of creation, last access and last
    consolidation. A half-life of 0 disables that decay.
    """

    half_life_hours: float = 168.0
    access_boost: float = 0.5
    emotional_half_life_days: float = 0.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "ImportancePolicy":
        return cls(
            half_life_hours=settings.importance_half_life_hours,
            access_boost=settings.access_boost,
            emotional_half_life_days=settings.emotional_half_life_days,
        )

    def recompute_importance(self, fragment: MemoryFragment, now: datetime) -> float:
        reference = fragment.consolidated_at or fragment.timestamp
        if fragment.last_accessed and fragment.last_accessed > reference:
            reference = fragment.last_accessed
        idle_hours = max(0.0, (now - reference).total_seconds() / 3600)

        value = fragment.importance
        if self.half_life_hours > 0:
            value *= 2 ** (-idle_hours / self.half_life_hours)

        new_accesses = max(0, fragment.access_count - fragment.access_baseline)
        value += self.access_boost * math.log1p(new_accesses)
        return min(IMPORTANCE_MAX, max(IMPORTANCE_MIN, value))

    def refine_emotion(self, fragment: MemoryFragment, now: datetime) -> float:
        if self.emotional_half_life_days <= 0:
            return fragment.emotional_impact
        elapsed = days_between(fragment.consolidated_at or fragment.timestamp, now)
        value = fragment.emotional_impact * 2 ** (-elapsed / self.emotional_half_life_days)
        return min(EMOTION_MAX, max(EMOTION_MIN, value))


@dataclass
class ConsolidationReport:
    """Outcome of one consolidation pass for one persona."""

    persona_id: str
    scanned: int = 0
    updated: int = 0
    promoted: dict[str, int] = field(default_factory=dict)
    evicted: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: bool = False
    cancelled: bool = False
    error: str | None = None


def target_tier(fragment: MemoryFragment, now: datetime, settings: Settings) -> MemoryTier:
    """Tier a fragment should occupy given its age. Never earlier than its current tier."""
    age = now - fragment.timestamp
    tier = fragment.tier
    if tier == MemoryTier.WORKING and age > timedelta(minutes=settings.working_window_minutes):
        tier = MemoryTier.SHORT_TERM
    if tier == MemoryTier.SHORT_TERM and age > timedelta(
        minutes=settings.short_term_window_minutes
    ):
        tier = MemoryTier.LONG_TERM
    return tier


def retention_score(fragment: MemoryFragment, now: datetime, decay_days: float = 30.0) -> float:
    """importance x time relevance; lowest is evicted first."""
    return fragment.importance * time_relevance(days_between(fragment.timestamp, now), decay_days)


class ConsolidationScheduler:
    """Per-persona consolidation with a cancellation signal.

    At most one pass runs per persona at a time; an overlapping trigger is
    skipped. Passes for different personas run in parallel up to the
    configured concurrency.
    """

    def __init__(
        self,
        store: MemoryStore,
        personas: PersonaRegistry,
        settings: Settings | None = None,
        policy: ImportancePolicy | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.personas = personas
        self.settings = settings or get_settings()
        self.policy = policy or ImportancePolicy.from_settings(self.settings)
        self.clock = clock
        self._cancel = asyncio.Event()
        self._semaphore = asyncio.Semaphore(self.settings.consolidation_concurrency)

    def cancel(self) -> None:
        """Stop in-flight passes after their current fragment."""
        self._cancel.set()

    def reset(self) -> None:
        self._cancel.clear()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    async def run_all(self, now: datetime | None = None) -> list[ConsolidationReport]:
        """Consolidate every persona. Safe to call from a scheduler loop."""
        if self.cancelled:
            return []
        personas = await self.personas.personas()
        reports = await asyncio.gather(*(self._bounded(p, now) for p in personas))

        evicted = sum(len(r.evicted) for r in reports)
        failed = sum(len(r.failed) for r in reports)
        logger.info(
            f"Consolidation: {len(reports)} personas, {evicted} evicted, {failed} failed"
        )
        return list(reports)

    async def _bounded(self, persona_id: str, now: datetime | None) -> ConsolidationReport:
        async with self._semaphore:
            return await self.run_persona(persona_id, now)

    async def run_persona(
        self, persona_id: str, now: datetime | None = None
    ) -> ConsolidationReport:
        """Single consolidation pass for one persona."""
        report = ConsolidationReport(persona_id=persona_id)
        lock = self.personas.lock(persona_id)
        if lock.locked():
            logger.debug(f"Consolidation already running for {persona_id}; skipping")
            report.skipped = True
            return report

        async with lock:
            now = now or self.clock()
            try:
                await self._scan(persona_id, now, report)
                if not report.cancelled:
                    await self._evict(persona_id, now, report)
            except StoreUnavailable as e:
                logger.error(f"Consolidation aborted for {persona_id}: {e}")
                report.error = str(e)

        logger.debug(
            f"Consolidated {persona_id}: scanned={report.scanned} updated={report.updated} "
            f"promoted={report.promoted} evicted={len(report.evicted)} failed={len(report.failed)}"
        )
        return report

    async def _scan(self, persona_id: str, now: datetime, report: ConsolidationReport) -> None:
        fragments = await self.store.list_fragments(persona_id)
        for fragment in fragments:
            if self.cancelled:
                report.cancelled = True
                logger.info(f"Consolidation of {persona_id} cancelled after {report.scanned}")
                return
            report.scanned += 1
            try:
                new_tier = await self._consolidate_fragment(fragment.id, now)
            except ConsolidationFragmentError as e:
                logger.warning(str(e))
                report.failed.append(fragment.id)
                continue
            report.updated += 1
            if new_tier is not None and new_tier != fragment.tier:
                report.promoted[new_tier.value] = report.promoted.get(new_tier.value, 0) + 1

    async def _consolidate_fragment(self, fragment_id: str, now: datetime) -> MemoryTier | None:
        """Rescore and migrate one fragment. Returns the tier written."""
        written: dict[str, MemoryTier] = {}

        def compute(fragment: MemoryFragment) -> dict:
            tier = target_tier(fragment, now, self.settings)
            written["tier"] = tier
            return {
                "importance": self.policy.recompute_importance(fragment, now),
                "emotional_impact": self.policy.refine_emotion(fragment, now),
                "tier": tier,
                "consolidated_at": now,
                "access_baseline": fragment.access_count,
            }

        try:
            outcome = await update_with_retry(
                self.store, fragment_id, compute, self.settings.cas_max_retries
            )
        except StoreUnavailable as e:
            raise ConsolidationFragmentError(fragment_id, str(e)) from e
        except (ArithmeticError, ValueError) as e:
            raise ConsolidationFragmentError(fragment_id, f"rescoring failed: {e}") from e

        if outcome == CasOutcome.CONFLICT:
            raise ConsolidationFragmentError(fragment_id, "version conflict")
        if outcome == CasOutcome.MISSING:
            return None
        return written.get("tier")

    async def _evict(self, persona_id: str, now: datetime, report: ConsolidationReport) -> None:
        quota = self.settings.max_long_term_per_persona
        long_term = await self.store.list_fragments(persona_id, tiers={MemoryTier.LONG_TERM})
        overflow = len(long_term) - quota
        if overflow <= 0:
            return

        decay_days = self.settings.time_decay_days
        long_term.sort(
            key=lambda f: (retention_score(f, now, decay_days), f.timestamp, f.id)
        )
        for fragment in long_term[:overflow]:
            if self.cancelled:
                report.cancelled = True
                return
            try:
                if await self.store.delete(fragment.id):
                    report.evicted.append(fragment.id)
            except StoreUnavailable as e:
                logger.warning(str(ConsolidationFragmentError(fragment.id, f"eviction failed: {e}")))
                report.failed.append(fragment.id)

        logger.info(f"Evicted {len(report.evicted)} LONG_TERM fragments for {persona_id}")
