"""
Per-session usage and cost ledger.

Every ``track_*`` call bumps provider counters, recomputes that provider's
cost from the totals, re-sums the session total, then publishes the full
snapshot to the session's subscribers.  Costs are always derived from the
accumulated counters, so splitting one call into several never changes the
total for a linear price table.

Subscribers are plain callables (sync or async).  Publishing never blocks
or fails the tracking call; socket transports subscribe from the outside so
this module has no dependency on them.
"""
from __future__ import annotations

import asyncio
import dataclasses
import inspect
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storyteller.config import Settings, get_settings
from storyteller.models import UsageSnapshot
from storyteller.state.registry import BoundedMap, MapPolicy
from storyteller.utils.logging_config import get_logger

logger = get_logger("storyteller.usage")

UsageListener = Callable[[str, Dict[str, Any]], Union[None, Awaitable[None]]]

# Prices in USD per 1K tokens unless noted otherwise.
PRICING: Dict[str, Any] = {
    "elevenlabs": {"per_character": 0.0002},
    "openai": {
        "gpt-5.1": {"input": 0.00125, "output": 0.01, "cached": 0.000625},
        "gpt-4": {"input": 0.01, "output": 0.03, "cached": 0.005},
        "gpt-4o": {"input": 0.0025, "output": 0.01, "cached": 0.00125},
        "gpt-4o-mini": {"input": 0.00015, "output": 0.0006, "cached": 0.000075},
        "gpt-4-turbo": {"input": 0.01, "output": 0.03, "cached": 0.005},
        "gpt-3.5-turbo": {"input": 0.0005, "output": 0.0015, "cached": 0.00025},
    },
    "openai_fallback_model": "gpt-4o-mini",
    "whisper": {"per_minute": 0.006},
    "realtime": {"audio_input": 0.005, "audio_output": 0.02,
                 "text_input": 0.0025, "text_output": 0.01},
    # USD per image
    "dall-e-3": {"standard1024": 0.04, "hd1024": 0.08,
                 "standard1792": 0.08, "hd1792": 0.12},
    "falai": {"instant-character": 0.03, "minimax": 0.05, "default": 0.04},
    "venice": {
        "llama-3.3-70b": {"input": 0.001, "output": 0.002},
        "default": {"input": 0.001, "output": 0.002},
    },
    "openrouter": {
        "anthropic/claude-3.5-sonnet": {"input": 0.003, "output": 0.015},
        "openai/gpt-4o": {"input": 0.0025, "output": 0.01},
        "openai/gpt-4o-mini": {"input": 0.00015, "output": 0.0006},
        "default": {"input": 0.002, "output": 0.008},
    },
}

PROVIDERS = ("elevenlabs", "openai", "whisper", "realtime", "images",
             "falai", "venice", "openrouter")


# ---------------------------------------------------------------------------
# Counters
# ---------------------------------------------------------------------------

@dataclasses.dataclass
class ModelUsage:
    input: int = 0
    output: int = 0
    cached: int = 0
    requests: int = 0


@dataclasses.dataclass
class SessionUsage:
    session_id: str
    started_at: float
    elevenlabs: Dict[str, int] = dataclasses.field(
        default_factory=lambda: {"characters": 0, "requests": 0, "audio_bytes": 0})
    openai: Dict[str, ModelUsage] = dataclasses.field(default_factory=dict)
    whisper: Dict[str, float] = dataclasses.field(
        default_factory=lambda: {"minutes": 0.0, "requests": 0})
    realtime: Dict[str, int] = dataclasses.field(
        default_factory=lambda: {"audio_input": 0, "audio_output": 0,
                                 "text_input": 0, "text_output": 0, "requests": 0})
    images: Dict[str, int] = dataclasses.field(default_factory=dict)
    falai: Dict[str, int] = dataclasses.field(default_factory=dict)
    venice: Dict[str, ModelUsage] = dataclasses.field(default_factory=dict)
    openrouter: Dict[str, ModelUsage] = dataclasses.field(default_factory=dict)
    costs: Dict[str, float] = dataclasses.field(
        default_factory=lambda: {p: 0.0 for p in PROVIDERS} | {"total": 0.0})

    def recompute_total(self) -> None:
        self.costs["total"] = sum(self.costs[p] for p in PROVIDERS)


# ---------------------------------------------------------------------------
# Pricing
# ---------------------------------------------------------------------------

def _per_1k(tokens: int, price: float) -> float:
    return tokens / 1000 * price


def openai_model_cost(model: str, usage: ModelUsage) -> float:
    table = PRICING["openai"]
    pricing = table.get(model) or table[PRICING["openai_fallback_model"]]
    return (_per_1k(usage.input, pricing["input"])
            + _per_1k(usage.output, pricing["output"])
            + _per_1k(usage.cached, pricing["cached"]))


def _router_model_cost(provider: str, model: str, usage: ModelUsage) -> float:
    table = PRICING[provider]
    pricing = table.get(model) or table["default"]
    return _per_1k(usage.input, pricing["input"]) + _per_1k(usage.output, pricing["output"])


def _sum_models(models: Dict[str, ModelUsage], field: str) -> int:
    return sum(getattr(m, field) for m in models.values())


def format_cost(value: float) -> str:
    return f"${value:.4f}"


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------

class UsageLedger:
    """Per-session provider accumulators with snapshot publishing."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.time,
    ):
        settings = settings or get_settings()
        self._session_factory = session_factory
        self._clock = clock
        self._ttl = settings.usage_ttl_seconds
        self._entries: BoundedMap[SessionUsage] = BoundedMap(
            MapPolicy("sessionUsage", settings.max_usage_sessions,
                      settings.warn_usage_sessions, settings.usage_ttl_seconds),
            lambda usage, now: now - usage.started_at > self._ttl,
        )
        self._listeners: Dict[str, list[UsageListener]] = {}
        self._pending: set[asyncio.Task] = set()

    # -- lifecycle ------------------------------------------------------------

    def init_session(self, session_id: str) -> SessionUsage:
        usage = SessionUsage(session_id=session_id, started_at=self._clock())
        self._entries.add(session_id, usage)
        logger.info("usage_session_initialized | session=%s", session_id)
        return usage

    def get(self, session_id: str) -> SessionUsage:
        usage = self._entries.get(session_id)
        if usage is None:
            usage = self.init_session(session_id)
        return usage

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    # -- pub/sub ----------------------------------------------------------------

    def subscribe(self, session_id: str, listener: UsageListener) -> Callable[[], None]:
        self._listeners.setdefault(session_id, []).append(listener)

        def unsubscribe() -> None:
            listeners = self._listeners.get(session_id, [])
            if listener in listeners:
                listeners.remove(listener)
            if not listeners:
                self._listeners.pop(session_id, None)

        return unsubscribe

    def _publish(self, usage: SessionUsage) -> None:
        listeners = list(self._listeners.get(usage.session_id, ()))
        if not listeners:
            return
        payload = self.snapshot(usage.session_id)
        for listener in listeners:
            try:
                result = listener(usage.session_id, payload)
            except Exception as exc:
                logger.warning("usage_listener_failed | session=%s | error=%s",
                               usage.session_id, exc)
                continue
            if inspect.isawaitable(result):
                self._schedule(usage.session_id, result)

    def _schedule(self, session_id: str, awaitable: Awaitable[None]) -> None:
        try:
            task = asyncio.ensure_future(awaitable)
        except RuntimeError as exc:
            # No running loop: the coroutine cannot be delivered.
            logger.warning("usage_listener_unscheduled | session=%s | error=%s", session_id, exc)
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return

        self._pending.add(task)

        def _done(t: asyncio.Task) -> None:
            self._pending.discard(t)
            if not t.cancelled() and t.exception() is not None:
                logger.warning("usage_listener_failed | session=%s | error=%s",
                               session_id, t.exception())

        task.add_done_callback(_done)

    # -- tracking ---------------------------------------------------------------

    def track_elevenlabs(self, session_id: str, text: str, audio_bytes: int = 0) -> SessionUsage:
        usage = self.get(session_id)
        characters = len(text or "")
        usage.elevenlabs["characters"] += characters
        usage.elevenlabs["requests"] += 1
        usage.elevenlabs["audio_bytes"] += audio_bytes
        usage.costs["elevenlabs"] = (
            usage.elevenlabs["characters"] * PRICING["elevenlabs"]["per_character"]
        )
        return self._finish(usage, "elevenlabs", f"+{characters} chars")

    def track_openai(self, session_id: str, model: str, input_tokens: int,
                     output_tokens: int, cached_tokens: int = 0) -> SessionUsage:
        usage = self.get(session_id)
        bucket = usage.openai.setdefault(model, ModelUsage())
        bucket.input += input_tokens
        bucket.output += output_tokens
        bucket.cached += cached_tokens
        bucket.requests += 1
        usage.costs["openai"] = sum(openai_model_cost(m, u) for m, u in usage.openai.items())
        return self._finish(usage, "openai", f"{model} +{input_tokens}/{output_tokens}")

    def track_whisper(self, session_id: str, duration_seconds: float) -> SessionUsage:
        usage = self.get(session_id)
        usage.whisper["minutes"] += duration_seconds / 60
        usage.whisper["requests"] += 1
        usage.costs["whisper"] = usage.whisper["minutes"] * PRICING["whisper"]["per_minute"]
        return self._finish(usage, "whisper", f"+{duration_seconds:.1f}s")

    def track_realtime(self, session_id: str, audio_input_tokens: int, audio_output_tokens: int,
                       text_input_tokens: int = 0, text_output_tokens: int = 0) -> SessionUsage:
        usage = self.get(session_id)
        counters = usage.realtime
        counters["audio_input"] += audio_input_tokens
        counters["audio_output"] += audio_output_tokens
        counters["text_input"] += text_input_tokens
        counters["text_output"] += text_output_tokens
        counters["requests"] += 1
        prices = PRICING["realtime"]
        usage.costs["realtime"] = sum(
            _per_1k(counters[field], prices[field]) for field in prices
        )
        return self._finish(usage, "realtime", f"audio={audio_input_tokens}/{audio_output_tokens}")

    def track_image(self, session_id: str, image_type: str = "standard1024") -> SessionUsage:
        prices = PRICING["dall-e-3"]
        if image_type not in prices:
            image_type = "standard1024"
        usage = self.get(session_id)
        usage.images[image_type] = usage.images.get(image_type, 0) + 1
        usage.costs["images"] = sum(prices[t] * n for t, n in usage.images.items())
        return self._finish(usage, "images", f"+1 {image_type}")

    def track_falai(self, session_id: str, model: str = "instant-character") -> SessionUsage:
        prices = PRICING["falai"]
        key = model if model in prices else "default"
        usage = self.get(session_id)
        usage.falai[key] = usage.falai.get(key, 0) + 1
        usage.costs["falai"] = sum(prices[k] * n for k, n in usage.falai.items())
        return self._finish(usage, "falai", f"+1 {model}")

    def track_venice(self, session_id: str, model: str, input_tokens: int,
                     output_tokens: int) -> SessionUsage:
        return self._track_router("venice", session_id, model, input_tokens, output_tokens)

    def track_openrouter(self, session_id: str, model: str, input_tokens: int,
                         output_tokens: int) -> SessionUsage:
        return self._track_router("openrouter", session_id, model, input_tokens, output_tokens)

    def _track_router(self, provider: str, session_id: str, model: str,
                      input_tokens: int, output_tokens: int) -> SessionUsage:
        usage = self.get(session_id)
        models: Dict[str, ModelUsage] = getattr(usage, provider)
        bucket = models.setdefault(model, ModelUsage())
        bucket.input += input_tokens
        bucket.output += output_tokens
        bucket.requests += 1
        usage.costs[provider] = sum(
            _router_model_cost(provider, m, u) for m, u in models.items()
        )
        return self._finish(usage, provider, f"{model} +{input_tokens}/{output_tokens}")

    def _finish(self, usage: SessionUsage, provider: str, detail: str) -> SessionUsage:
        usage.recompute_total()
        logger.info("usage_tracked | session=%s | provider=%s | %s | provider_cost=%s | total=%s",
                    usage.session_id, provider, detail,
                    format_cost(usage.costs[provider]), format_cost(usage.costs["total"]))
        self._publish(usage)
        return usage

    # -- read models ------------------------------------------------------------

    def snapshot(self, session_id: str) -> Dict[str, Any]:
        """Full ``usage-update`` payload for *session_id*."""
        usage = self.get(session_id)

        def by_model(models: Dict[str, ModelUsage], cost_fn) -> Dict[str, Any]:
            return {
                model: {"input": u.input, "output": u.output, "cached": u.cached,
                        "requests": u.requests, "cost": cost_fn(model, u)}
                for model, u in models.items()
            }

        return {
            "session_id": session_id,
            "elevenlabs": {**usage.elevenlabs, "cost": usage.costs["elevenlabs"]},
            "openai": {
                "input_tokens": _sum_models(usage.openai, "input"),
                "output_tokens": _sum_models(usage.openai, "output"),
                "cached_tokens": _sum_models(usage.openai, "cached"),
                "requests": _sum_models(usage.openai, "requests"),
                "cost": usage.costs["openai"],
                "by_model": by_model(usage.openai, openai_model_cost),
            },
            "whisper": {**usage.whisper, "cost": usage.costs["whisper"]},
            "realtime": {**usage.realtime, "cost": usage.costs["realtime"]},
            "images": {"count": sum(usage.images.values()), "by_type": dict(usage.images),
                       "cost": usage.costs["images"]},
            "falai": {"count": sum(usage.falai.values()), "by_model": dict(usage.falai),
                      "cost": usage.costs["falai"]},
            "venice": {
                "input_tokens": _sum_models(usage.venice, "input"),
                "output_tokens": _sum_models(usage.venice, "output"),
                "requests": _sum_models(usage.venice, "requests"),
                "cost": usage.costs["venice"],
                "by_model": by_model(usage.venice,
                                     lambda m, u: _router_model_cost("venice", m, u)),
            },
            "openrouter": {
                "input_tokens": _sum_models(usage.openrouter, "input"),
                "output_tokens": _sum_models(usage.openrouter, "output"),
                "requests": _sum_models(usage.openrouter, "requests"),
                "cost": usage.costs["openrouter"],
                "by_model": by_model(usage.openrouter,
                                     lambda m, u: _router_model_cost("openrouter", m, u)),
            },
            "total": {"cost": usage.costs["total"],
                      "formatted": format_cost(usage.costs["total"])},
            "provider_split": {
                "openai": _sum_models(usage.openai, "requests"),
                "venice": _sum_models(usage.venice, "requests"),
                "openrouter": _sum_models(usage.openrouter, "requests"),
            },
        }

    def summary(self, session_id: str) -> Dict[str, Any]:
        usage = self.get(session_id)
        duration = max(self._clock() - usage.started_at, 0)
        return {
            "session_id": session_id,
            "started_at": datetime.fromtimestamp(usage.started_at, timezone.utc).isoformat(),
            "duration_minutes": round(duration / 60, 1),
            "costs": {p: format_cost(usage.costs[p]) for p in PROVIDERS},
            "total": format_cost(usage.costs["total"]),
            "total_cost": usage.costs["total"],
        }

    # -- persistence ------------------------------------------------------------

    async def persist(self, session_id: str) -> bool:
        """Upsert the denormalized snapshot for *session_id*; last write wins."""
        if self._session_factory is None:
            logger.warning("usage_persist_skipped | session=%s | reason=no_database", session_id)
            return False
        if session_id not in self._entries:
            logger.info("usage_persist_skipped | session=%s | reason=not_tracked", session_id)
            return False

        usage = self.get(session_id)
        snapshot = self.snapshot(session_id)
        row = UsageSnapshot(
            session_id=session_id,
            elevenlabs_characters=usage.elevenlabs["characters"],
            openai_input_tokens=snapshot["openai"]["input_tokens"],
            openai_output_tokens=snapshot["openai"]["output_tokens"],
            whisper_minutes=usage.whisper["minutes"],
            image_count=snapshot["images"]["count"],
            total_cost=usage.costs["total"],
            costs=dict(usage.costs),
            breakdown=snapshot,
        )
        try:
            async with self._session_factory() as db:
                await db.merge(row)
                await db.commit()
        except Exception as exc:
            logger.error("usage_persist_failed | session=%s | error=%s", session_id, exc)
            return False

        logger.info("usage_persisted | session=%s | total=%s",
                    session_id, format_cost(usage.costs["total"]))
        return True

    async def end_session(self, session_id: str) -> bool:
        saved = await self.persist(session_id)
        self._entries.pop(session_id)
        self._listeners.pop(session_id, None)
        return saved

    async def sweep(self, now: Optional[float] = None) -> int:
        """Persist then evict ledgers older than the usage TTL."""
        now = self._clock() if now is None else now
        expired = self._entries.expired_keys(now)
        for session_id in expired:
            await self.persist(session_id)
        for session_id in expired:
            self._entries.pop(session_id)
            self._listeners.pop(session_id, None)
        if expired:
            logger.info("usage_sweep | removed=%d | active=%d", len(expired), len(self._entries))
        return len(expired)

    async def run_reaper(self, interval: float) -> None:
        logger.info("usage_reaper_started | interval=%ss", interval)
        while True:
            await asyncio.sleep(interval)
            try:
                await self.sweep()
            except Exception:
                logger.exception("usage_sweep_failed")
