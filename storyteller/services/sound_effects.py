"""ElevenLabs sound-effect generation with a disk + database cache."""
from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storyteller.config import Settings, get_settings
from storyteller.models import SfxCacheEntry
from storyteller.state.usage import UsageLedger
from storyteller.utils.logging_config import get_logger
from storyteller.utils.retry import NonRetryableError, retry_async

logger = get_logger("storyteller.sfx")

DEFAULT_DURATION = 10
DEFAULT_PROMPT_INFLUENCE = 0.5


class SoundEffectError(RuntimeError):
    pass


class RejectedSoundEffectError(SoundEffectError, NonRetryableError):
    """ElevenLabs refused the request itself (bad key or rejected prompt)."""


def cache_key(prompt: str, duration: float, loop: bool) -> str:
    raw = f"sfx:{prompt}:{duration}:{str(bool(loop)).lower()}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class SoundEffectService:
    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        ledger: Optional[UsageLedger] = None,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings or get_settings()
        self._session_factory = session_factory
        self.ledger = ledger
        self._http = http_client
        self.cache_dir = Path(self.settings.sfx_cache_dir)

    @property
    def enabled(self) -> bool:
        return bool(self.settings.elevenlabs_api_key)

    async def check_cache(self, key: str) -> Optional[bytes]:
        if self._session_factory is None:
            return None
        try:
            async with self._session_factory() as db:
                row = await db.get(SfxCacheEntry, key)
                if row is None:
                    return None
                path = Path(row.file_path)
                if not path.exists():
                    logger.info("sfx_cache_stale | key=%s | path=%s", key[:16], path)
                    return None
                row.hit_count = (row.hit_count or 0) + 1
                await db.commit()
            return path.read_bytes()
        except (SQLAlchemyError, OSError) as exc:
            logger.error("sfx_cache_check_failed | key=%s | error=%s", key[:16], exc)
            return None

    async def store(self, key: str, prompt: str, duration: float, loop: bool, audio: bytes) -> Optional[Path]:
        path = self.cache_dir / f"{key}.mp3"
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            path.write_bytes(audio)
        except OSError as exc:
            # Without the file there is nothing for a cache row to point at.
            logger.error("sfx_cache_write_failed | path=%s | error=%s", path, exc)
            return None

        if self._session_factory is None:
            return path
        try:
            async with self._session_factory() as db:
                await db.merge(SfxCacheEntry(
                    cache_key=key,
                    prompt=prompt[:200],
                    duration_seconds=duration,
                    loop=loop,
                    file_path=str(path),
                    size_bytes=len(audio),
                    hit_count=0,
                ))
                await db.commit()
        except SQLAlchemyError as exc:
            logger.error("sfx_cache_row_failed | key=%s | error=%s", key[:16], exc)
        return path

    async def _request(self, prompt: str, duration: float, loop: bool, prompt_influence: float) -> bytes:
        body = {"text": prompt, "duration_seconds": duration, "prompt_influence": prompt_influence}
        if loop:
            body["loop"] = True
        headers = {
            "xi-api-key": self.settings.elevenlabs_api_key,
            "Content-Type": "application/json",
            "Accept": "audio/mpeg",
        }
        url = f"{self.settings.elevenlabs_base_url}/sound-generation"

        if self._http is not None:
            response = await self._http.post(url, json=body, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=60.0) as client:
                response = await client.post(url, json=body, headers=headers)

        if response.status_code == 401:
            raise RejectedSoundEffectError("Invalid ElevenLabs API key")
        if response.status_code == 422:
            raise RejectedSoundEffectError(f"Invalid input: SFX prompt rejected ({prompt[:50]})")
        if response.status_code == 429:
            raise SoundEffectError("ElevenLabs rate limit exceeded for SFX")
        response.raise_for_status()
        return response.content

    async def generate(
        self,
        prompt: str,
        *,
        duration: float = DEFAULT_DURATION,
        loop: bool = False,
        prompt_influence: float = DEFAULT_PROMPT_INFLUENCE,
        session_id: Optional[str] = None,
    ) -> bytes:
        """Audio bytes (MP3) for *prompt*, from cache when possible."""
        if not self.enabled:
            raise SoundEffectError("Sound effects not enabled - API key missing")

        key = cache_key(prompt, duration, loop)
        cached = await self.check_cache(key)
        if cached is not None:
            logger.info("sfx_cache_hit | key=%s | prompt=%s", key[:16], prompt[:40])
            return cached

        logger.info("sfx_generating | prompt=%s | duration=%s | loop=%s", prompt[:50], duration, loop)
        audio = await retry_async(
            lambda: self._request(prompt, duration, loop, prompt_influence),
            label="sfx_generation",
        )
        if self.ledger is not None and session_id:
            self.ledger.track_elevenlabs(session_id, prompt, len(audio))

        await self.store(key, prompt, duration, loop, audio)
        logger.info("sfx_generated | key=%s | bytes=%d", key[:16], len(audio))
        return audio
