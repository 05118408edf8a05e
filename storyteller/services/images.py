"""
Cover and scene images through a DALL-E style ``images.generate`` endpoint.

Mature stories often trip the provider's content policy.  Rather than fail,
``generate_with_fallback`` walks a ladder of three prompts that grow more
abstract (detailed, abstract, symbolic) and keeps the first image that
comes back.  Only when every tier fails does it raise.
"""
from __future__ import annotations

import dataclasses
import re
import time
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import httpx

from storyteller.config import Settings, get_settings
from storyteller.services.llm import LLMClient
from storyteller.state.usage import UsageLedger
from storyteller.utils.json_recovery import parse_json_object
from storyteller.utils.logging_config import get_logger
from storyteller.utils.retry import retry_async

logger = get_logger("storyteller.images")

TIER_NAMES = ("detailed", "abstract", "symbolic")

COVER_SUFFIX = (
    " Professional book cover artwork, painterly style, dramatic composition, rich atmosphere,"
    " cinematic lighting. NO TEXT, NO LETTERS, NO WORDS in the image."
    " Leave space at top for title overlay."
)

FALLBACK_PROMPTS = (
    "A dramatic atmospheric scene with rich colors, professional book cover artwork, painterly style, NO TEXT.",
    "An abstract artistic composition with flowing shapes and dramatic lighting, book cover style, NO TEXT.",
    "A beautiful artistic gradient with subtle symbolic elements, elegant book cover artwork, NO TEXT.",
)

# Words that routinely trigger the image content filter, with softer stand-ins.
SAFE_REPLACEMENTS = {
    "horror": "gothic",
    "terror": "suspense",
    "terrifying": "dramatic",
    "scary": "atmospheric",
    "creepy": "mysterious",
    "blood": "shadows",
    "bloody": "dramatic",
    "death": "fate",
    "dead": "fallen",
    "kill": "confront",
    "killing": "confronting",
    "killed": "confronted",
    "murder": "mystery",
    "murdered": "vanished",
    "murderer": "suspect",
    "corpse": "figure",
    "corpses": "figures",
    "zombie": "mysterious figure",
    "zombies": "mysterious figures",
    "monster": "creature",
    "monsters": "creatures",
    "demon": "mystical being",
    "demons": "mystical beings",
    "evil": "antagonistic",
    "sinister": "mysterious",
    "menacing": "imposing",
    "violent": "intense",
    "violence": "conflict",
    "torture": "captivity",
    "gore": "drama",
}
_UNSAFE_WORD = re.compile(
    r"\b(" + "|".join(sorted(SAFE_REPLACEMENTS, key=len, reverse=True)) + r")\b",
    re.IGNORECASE,
)

COVER_PROMPT_SYSTEM = "You are a creative book cover art director. Return only valid JSON."

COVER_PROMPT_TEMPLATE = """You are a book cover art director. Based on this story, generate THREE image prompts for a paperback book cover. Each prompt should be progressively more abstract so that at least one passes the image model's content policy.

STORY CONTEXT:
{context}

RULES:
1. NO TEXT in the image; the title is overlaid separately
2. Leave space at top for title overlay
3. Professional book cover composition

PROMPT 1 (DETAILED): a literal interpretation of the story's key scene or atmosphere.
PROMPT 2 (ABSTRACT): a symbolic interpretation. Violence becomes shadows or silhouettes, romance becomes flowers or intertwined elements, horror becomes atmospheric effects.
PROMPT 3 (VERY ABSTRACT): universal, safe, poetic symbols such as "a single rose on silk sheets" or "a candle flame in darkness".

Return JSON: {{"prompt1": "...", "prompt2": "...", "prompt3": "..."}}"""


class ImageGenerationError(RuntimeError):
    """Every prompt tier was rejected or failed."""

    def __init__(self, message: str, last_error: Optional[BaseException] = None):
        super().__init__(message)
        self.last_error = last_error


@dataclasses.dataclass
class GeneratedImage:
    image_url: str
    original_url: str
    tier_used: int
    tier_name: str
    revised_prompt: Optional[str] = None
    file_path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"success": True, **dataclasses.asdict(self)}


def sanitize_prompt(text: str) -> str:
    if not text:
        return text
    return _UNSAFE_WORD.sub(lambda m: SAFE_REPLACEMENTS[m.group(0).lower()], text)


def image_type_for(quality: str, size: str) -> str:
    """Pricing bucket for an image of *quality* and *size*."""
    wide = size in ("1792x1024", "1024x1792")
    if quality == "hd":
        return "hd1792" if wide else "hd1024"
    return "standard1792" if wide else "standard1024"


def is_content_policy_error(exc: BaseException) -> bool:
    if "content_policy" in str(exc).lower():
        return True
    code = getattr(exc, "code", None)
    if code == "content_policy_violation":
        return True
    body = getattr(exc, "body", None)
    return isinstance(body, dict) and body.get("code") == "content_policy_violation"


def describe_story(story: Dict[str, Any]) -> str:
    genres = story.get("genres") or {}
    strong = [g for g, weight in genres.items() if (weight or 0) > 30]
    characters = story.get("characters") or []
    names = [c if isinstance(c, str) else (c.get("name") or c.get("role") or "") for c in characters[:3]]
    themes = story.get("themes") or []
    return "\n".join([
        f"Title: {story.get('title') or 'Untitled Story'}",
        f"Synopsis: {story.get('synopsis') or ''}",
        f"Genres: {', '.join(strong) or 'general fiction'}",
        f"Mood: {story.get('mood') or 'adventurous'}",
        f"Setting: {story.get('setting') or ''}",
        f"Themes: {', '.join(themes) if isinstance(themes, list) else themes}",
        f"Main Characters: {', '.join(n for n in names if n)}",
    ])


class ImageGenerator:
    def __init__(
        self,
        llm: LLMClient,
        ledger: Optional[UsageLedger] = None,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.llm = llm
        self.ledger = ledger if ledger is not None else llm.ledger
        self.settings = settings or get_settings()
        self._http = http_client
        self.output_dir = Path(self.settings.image_output_dir)

    async def cover_prompts(self, story: Dict[str, Any], *, session_id: Optional[str] = None) -> List[str]:
        """Three cover prompts, most literal first. Falls back to generic prompts."""
        try:
            completion = await self.llm.complete_json(
                "cover_prompt",
                COVER_PROMPT_SYSTEM,
                COVER_PROMPT_TEMPLATE.format(context=describe_story(story)),
                model="gpt-4o-mini",
                temperature=0.8,
                max_tokens=1500,
                session_id=session_id,
            )
            parsed = parse_json_object(completion.content)
        except Exception as exc:
            logger.error("cover_prompts_failed | error=%s", exc)
            parsed = None

        if not parsed:
            logger.warning("cover_prompts_fallback | session=%s", session_id)
            return list(FALLBACK_PROMPTS)
        return [
            sanitize_prompt(str(parsed.get(f"prompt{i}") or "")) + COVER_SUFFIX
            for i in (1, 2, 3)
        ]

    async def generate_with_fallback(
        self,
        prompts: Sequence[str],
        *,
        session_id: Optional[str] = None,
        size: str = "1792x1024",
        quality: str = "hd",
        prefix: str = "cover",
    ) -> GeneratedImage:
        last_error: Optional[BaseException] = None
        for index, prompt in enumerate(prompts[: len(TIER_NAMES)]):
            tier, tier_name = index + 1, TIER_NAMES[index]
            logger.info("image_tier_attempt | tier=%d | name=%s | session=%s", tier, tier_name, session_id)
            try:
                response = await self.llm.client.images.generate(
                    model=self.settings.image_model,
                    prompt=prompt,
                    n=1,
                    size=size,
                    quality=quality,
                    response_format="url",
                )
                image = response.data[0]
                if self.ledger is not None and session_id:
                    self.ledger.track_image(session_id, image_type_for(quality, size))

                filename = f"{prefix}_{session_id or uuid.uuid4().hex}_{int(time.time() * 1000)}.png"
                path = await self.download(image.url, filename)
            except Exception as exc:
                last_error = exc
                if is_content_policy_error(exc):
                    logger.warning("image_tier_rejected | tier=%d | name=%s | reason=content_policy",
                                   tier, tier_name)
                else:
                    logger.error("image_tier_failed | tier=%d | name=%s | error=%s", tier, tier_name, exc)
                continue

            public_url = f"{self.settings.image_public_prefix}/{filename}"
            logger.info("image_generated | tier=%d | name=%s | url=%s", tier, tier_name, public_url)
            return GeneratedImage(
                image_url=public_url,
                original_url=image.url,
                tier_used=tier,
                tier_name=tier_name,
                revised_prompt=getattr(image, "revised_prompt", None),
                file_path=str(path),
            )

        logger.error("image_all_tiers_failed | session=%s | tiers=%d", session_id, len(prompts))
        raise ImageGenerationError("All image generation attempts failed", last_error)

    async def generate_cover(self, story: Dict[str, Any], *, session_id: Optional[str] = None,
                             size: str = "1792x1024", quality: str = "hd") -> GeneratedImage:
        prompts = await self.cover_prompts(story, session_id=session_id)
        return await self.generate_with_fallback(
            prompts, session_id=session_id, size=size, quality=quality, prefix="cover",
        )

    async def download(self, url: str, filename: str) -> Path:
        async def fetch() -> bytes:
            if self._http is not None:
                response = await self._http.get(url)
            else:
                async with httpx.AsyncClient(timeout=60.0) as client:
                    response = await client.get(url)
            response.raise_for_status()
            return response.content

        content = await retry_async(fetch, label="image_download")
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.output_dir / filename
        path.write_bytes(content)
        return path
