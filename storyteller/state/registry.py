"""
Bounded in-memory registries for live sessions and the TTL reaper.

One ``SessionRegistry`` is built per process (in the FastAPI lifespan) and
handed to socket handlers through their context.  Each map has a hard
capacity: admission fails loudly instead of evicting another session's
state.  The reaper is the only actor that deletes entries it did not just
insert, and it always collects expired ids before deleting any of them so
handlers interleaving at ``await`` points never see a map change under an
active iteration.
"""
from __future__ import annotations

import asyncio
import dataclasses
import time
from typing import Any, Callable, Dict, Generic, Iterator, Optional, TypeVar

from storyteller.config import Settings, get_settings
from storyteller.utils.logging_config import get_logger

logger = get_logger("storyteller.registry")

Clock = Callable[[], float]
R = TypeVar("R")

LAUNCH_STAGES = ("voices", "sfx", "cover", "qa", "audio")


class CapacityExceededError(RuntimeError):
    """Raised when a registry map is at its hard limit."""

    def __init__(self, map_name: str, size: int, max_size: int):
        super().__init__(f"CAPACITY EXCEEDED: {map_name} has {size}/{max_size} entries")
        self.map_name = map_name
        self.size = size
        self.max_size = max_size


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclasses.dataclass
class ActiveSession:
    session_id: str
    socket_id: str
    timestamp: float
    data: Dict[str, Any] = dataclasses.field(default_factory=dict)


@dataclasses.dataclass
class PendingAudio:
    session_id: str
    payload: Dict[str, Any]
    timestamp: float


@dataclasses.dataclass
class LaunchSequence:
    """A cooperative multi-stage launch (voices, sfx, cover, qa, audio).

    ``cancel()`` only flips a flag: in-flight provider calls finish, but
    stage owners must check ``cancelled`` before acting on their result.
    """
    session_id: str
    start_time: float
    stages: Dict[str, str] = dataclasses.field(
        default_factory=lambda: {stage: "pending" for stage in LAUNCH_STAGES}
    )
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True
        for stage, status in self.stages.items():
            if status in ("pending", "running"):
                self.stages[stage] = "cancelled"

    def mark_stage(self, stage: str, status: str) -> None:
        if stage not in self.stages:
            raise KeyError(f"unknown launch stage: {stage}")
        if self.cancelled:
            return
        self.stages[stage] = status

    def retry_stage(self, stage: str) -> None:
        if stage not in self.stages:
            raise KeyError(f"unknown launch stage: {stage}")
        self.cancelled = False
        self.stages[stage] = "pending"

    @property
    def is_ready(self) -> bool:
        return not self.cancelled and all(s == "complete" for s in self.stages.values())


@dataclasses.dataclass
class GenerationProgress:
    session_id: str
    start_time: float
    last_update: float
    step: str = "queued"
    progress: int = 0
    message: str = ""
    is_generating: bool = True

    def update(self, now: float, *, step: Optional[str] = None,
               progress: Optional[int] = None, message: Optional[str] = None) -> None:
        if step is not None:
            self.step = step
        if progress is not None:
            self.progress = max(0, min(int(progress), 100))
        if message is not None:
            self.message = message
        self.last_update = now

    def complete(self, now: float, message: str = "complete") -> None:
        self.update(now, step="complete", progress=100, message=message)
        self.is_generating = False


# ---------------------------------------------------------------------------
# Bounded map
# ---------------------------------------------------------------------------

@dataclasses.dataclass(frozen=True)
class MapPolicy:
    name: str
    max_size: int
    warn_size: int
    ttl_seconds: float


class BoundedMap(Generic[R]):
    """A dict with admission control and an age function for expiry."""

    def __init__(self, policy: MapPolicy, is_expired: Callable[[R, float], bool]):
        self.policy = policy
        self._is_expired = is_expired
        self._entries: Dict[str, R] = {}

    @property
    def name(self) -> str:
        return self.policy.name

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._entries))

    def get(self, key: str) -> Optional[R]:
        return self._entries.get(key)

    def can_add(self) -> None:
        size = len(self._entries)
        if size >= self.policy.max_size:
            logger.error("registry_capacity_exceeded | map=%s | size=%d | max=%d",
                         self.name, size, self.policy.max_size)
            raise CapacityExceededError(self.name, size, self.policy.max_size)
        if size >= self.policy.warn_size:
            logger.warning("registry_near_capacity | map=%s | size=%d | warn=%d | max=%d",
                           self.name, size, self.policy.warn_size, self.policy.max_size)

    def add(self, key: str, record: R) -> R:
        """Insert or replace *record*; only new keys go through admission."""
        if key not in self._entries:
            self.can_add()
        self._entries[key] = record
        return record

    def pop(self, key: str) -> Optional[R]:
        return self._entries.pop(key, None)

    def expired_keys(self, now: float) -> list[str]:
        """Phase one of a sweep: collect, never mutate."""
        return [key for key, record in list(self._entries.items()) if self._is_expired(record, now)]


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class SessionRegistry:
    """The four process-level registries plus their sweep."""

    def __init__(self, settings: Optional[Settings] = None, clock: Clock = time.time):
        settings = settings or get_settings()
        self.clock = clock
        self._completed_ttl = settings.completed_progress_ttl_seconds

        session_ttl = settings.session_ttl_seconds
        audio_ttl = settings.pending_audio_ttl_seconds
        launch_ttl = settings.launch_sequence_ttl_seconds
        progress_ttl = settings.generation_progress_ttl_seconds

        self.active_sessions: BoundedMap[ActiveSession] = BoundedMap(
            MapPolicy("activeSessions", settings.max_active_sessions,
                      settings.warn_active_sessions, session_ttl),
            lambda r, now: now - r.timestamp > session_ttl,
        )
        self.pending_audio: BoundedMap[PendingAudio] = BoundedMap(
            MapPolicy("pendingAudio", settings.max_pending_audio,
                      settings.warn_pending_audio, audio_ttl),
            lambda r, now: now - r.timestamp > audio_ttl,
        )
        self.launch_sequences: BoundedMap[LaunchSequence] = BoundedMap(
            MapPolicy("activeLaunchSequences", settings.max_launch_sequences,
                      settings.warn_launch_sequences, launch_ttl),
            lambda r, now: now - r.start_time > launch_ttl,
        )
        self.generation_progress: BoundedMap[GenerationProgress] = BoundedMap(
            MapPolicy("generationProgress", settings.max_generation_progress,
                      settings.warn_generation_progress, progress_ttl),
            self._progress_expired,
        )
        self._maps: Dict[str, BoundedMap] = {
            m.name: m for m in (self.active_sessions, self.pending_audio,
                                self.launch_sequences, self.generation_progress)
        }

    def _progress_expired(self, record: GenerationProgress, now: float) -> bool:
        stale = now - record.start_time > self.generation_progress.policy.ttl_seconds
        completed_old = not record.is_generating and now - record.last_update > self._completed_ttl
        return stale or completed_old

    def get_map(self, name: str) -> BoundedMap:
        try:
            return self._maps[name]
        except KeyError:
            raise KeyError(f"unknown registry map: {name}") from None

    def can_add(self, map_name: str) -> None:
        self.get_map(map_name).can_add()

    # -- convenience constructors used by socket handlers -------------------

    def register_session(self, socket_id: str, session_id: str) -> ActiveSession:
        record = ActiveSession(session_id=session_id, socket_id=socket_id, timestamp=self.clock())
        return self.active_sessions.add(socket_id, record)

    def touch_session(self, socket_id: str) -> None:
        record = self.active_sessions.get(socket_id)
        if record is not None:
            record.timestamp = self.clock()

    def start_launch(self, session_id: str) -> LaunchSequence:
        return self.launch_sequences.add(
            session_id, LaunchSequence(session_id=session_id, start_time=self.clock())
        )

    def cancel_launch(self, session_id: str) -> bool:
        sequence = self.launch_sequences.pop(session_id)
        if sequence is None:
            return False
        sequence.cancel()
        return True

    def start_progress(self, session_id: str, step: str = "queued") -> GenerationProgress:
        now = self.clock()
        return self.generation_progress.add(
            session_id,
            GenerationProgress(session_id=session_id, start_time=now, last_update=now, step=step),
        )

    def queue_audio(self, key: str, session_id: str, payload: Dict[str, Any]) -> PendingAudio:
        return self.pending_audio.add(
            key, PendingAudio(session_id=session_id, payload=payload, timestamp=self.clock())
        )

    # -- sweep --------------------------------------------------------------

    def sweep(self, now: Optional[float] = None) -> Dict[str, int]:
        """Expire stale entries from every map.

        Phase one collects expired ids into plain lists for every map;
        phase two deletes exactly those ids.
        """
        now = self.clock() if now is None else now

        expired = {name: m.expired_keys(now) for name, m in self._maps.items()}

        removed: Dict[str, int] = {}
        for name, keys in expired.items():
            target = self._maps[name]
            count = 0
            for key in keys:
                record = target.pop(key)
                if record is None:
                    continue
                count += 1
                if isinstance(record, LaunchSequence):
                    try:
                        record.cancel()
                    except Exception as exc:
                        logger.debug("launch_cancel_failed | session=%s | error=%s",
                                     record.session_id, exc)
            removed[name] = count

        total = sum(removed.values())
        if total:
            logger.info("registry_sweep | removed=%d | detail=%s", total, removed)
        self.check_size_limits()
        return removed

    def check_size_limits(self) -> None:
        for m in self._maps.values():
            if len(m) >= m.policy.warn_size:
                logger.warning("registry_near_capacity | map=%s | size=%d | max=%d",
                               m.name, len(m), m.policy.max_size)

    def stats(self) -> Dict[str, Dict[str, int]]:
        return {
            name: {"size": len(m), "warn": m.policy.warn_size, "max": m.policy.max_size}
            for name, m in self._maps.items()
        }

    async def run_reaper(self, interval: float) -> None:
        """Sweep every *interval* seconds until cancelled."""
        logger.info("registry_reaper_started | interval=%ss", interval)
        while True:
            await asyncio.sleep(interval)
            try:
                self.sweep()
            except Exception:
                logger.exception("registry_sweep_failed")
