"""
Director personas for voice-acted stories.

A director controls production vision (scene structure, sound design, voice
direction); the author style controls prose.  Personas are an immutable
table and every lookup works generically over it.
"""
from __future__ import annotations

import dataclasses
from types import MappingProxyType
from typing import Iterable, Mapping, Optional, Union

from storyteller.utils.logging_config import get_logger

logger = get_logger("storyteller.directors")

DEFAULT_PERSONA_KEY = "spielberg"


@dataclasses.dataclass(frozen=True)
class SoundDesign:
    ambience: str
    effects: str
    music: str
    silence: str


@dataclasses.dataclass(frozen=True)
class VoiceActing:
    narrator: str
    dialogue: str
    emotion: str
    physicality: str


@dataclasses.dataclass(frozen=True)
class DirectorPersona:
    key: str
    name: str
    best_for: tuple[str, ...]
    description: str
    sfx_philosophy: str
    voice_direction: str
    pacing: str
    production_notes: str
    scene_structure: str
    signature_elements: tuple[str, ...]
    sound_design: SoundDesign
    voice_acting: VoiceActing


PERSONAS: tuple[DirectorPersona, ...] = (
    DirectorPersona(
        key="hitchcock",
        name="Alfred Hitchcock",
        best_for=("thriller", "mystery", "horror"),
        description="Suspense through anticipation; the audience knows more than the characters.",
        sfx_philosophy="Sparse, precise sounds that tighten tension; one well-placed creak beats ten.",
        voice_direction="Controlled, clipped delivery with menace held under the surface.",
        pacing="Slow burn that tightens steadily toward a sharp release.",
        production_notes="Let the listener see the bomb under the table long before it goes off.",
        scene_structure="Establish normality, plant the threat, stretch the wait, release.",
        signature_elements=("dramatic irony", "a recurring motif sound", "the ordinary made sinister"),
        sound_design=SoundDesign(
            ambience="Quiet rooms where small sounds become loud.",
            effects="Isolated, exact foley such as a key turning or footsteps on stairs.",
            music="Strings that swell only at the moment of revelation.",
            silence="Silence is the main instrument of suspense.",
        ),
        voice_acting=VoiceActing(
            narrator="Dry, knowing, faintly amused.",
            dialogue="Polite words carrying hidden threat.",
            emotion="Restrained until it cracks.",
            physicality="Held breaths and swallowed reactions.",
        ),
    ),
    DirectorPersona(
        key="michael_bay",
        name="Michael Bay",
        best_for=("action", "adventure", "scifi"),
        description="Maximum spectacle, momentum and impact.",
        sfx_philosophy="Layered, dense effects; every action has a big sonic payoff.",
        voice_direction="Urgent, shouted over chaos, heroic one-liners.",
        pacing="Relentless forward motion with brief breathers.",
        production_notes="Escalate every set piece beyond the last one.",
        scene_structure="Cold open in motion, escalate, explode, regroup, escalate again.",
        signature_elements=("slow-motion beats", "countdowns", "hero moments at sunset"),
        sound_design=SoundDesign(
            ambience="Wind, engines and crowds filling the whole stereo field.",
            effects="Explosions, impacts and whooshes stacked for weight.",
            music="Driving percussion and brass.",
            silence="One beat of silence right before the biggest hit.",
        ),
        voice_acting=VoiceActing(
            narrator="Punchy and kinetic.",
            dialogue="Fast, overlapping, shouted commands.",
            emotion="Big and immediate.",
            physicality="Heavy breathing, grunts and exertion.",
        ),
    ),
    DirectorPersona(
        key="wes_anderson",
        name="Wes Anderson",
        best_for=("humor", "literary", "fairytale"),
        description="Symmetry, deadpan whimsy and melancholy charm.",
        sfx_philosophy="Crisp, slightly stylised sounds, almost storybook.",
        voice_direction="Deadpan, precise, emotionally understated.",
        pacing="Measured chapters with neat transitions.",
        production_notes="Treat every scene like a carefully arranged diorama.",
        scene_structure="Titled vignettes, each with a tidy internal shape.",
        signature_elements=("chapter cards", "deadpan asides", "eccentric ensembles"),
        sound_design=SoundDesign(
            ambience="Clean and intimate, like a miniature set.",
            effects="Precise, slightly comic foley.",
            music="Harpsichord, plucked strings and folk songs.",
            silence="Awkward pauses played for gentle comedy.",
        ),
        voice_acting=VoiceActing(
            narrator="Formal storybook narrator.",
            dialogue="Flat delivery of absurd lines.",
            emotion="Sadness beneath politeness.",
            physicality="Minimal; stillness is funny.",
        ),
    ),
    DirectorPersona(
        key="tarantino",
        name="Quentin Tarantino",
        best_for=("thriller", "humor", "mystery"),
        description="Sharp dialogue, non-linear tension and sudden violence.",
        sfx_philosophy="Quiet talk punctuated by loud, abrupt effects.",
        voice_direction="Rhythmic, stylised dialogue with swagger.",
        pacing="Long conversations that snap into bursts of action.",
        production_notes="Let characters talk about something else while tension builds.",
        scene_structure="Chapters out of order, each a self-contained stand-off.",
        signature_elements=("extended dialogue scenes", "Mexican stand-offs", "pop-culture riffs"),
        sound_design=SoundDesign(
            ambience="Diners, cars and radios.",
            effects="Sharp, exaggerated gunshots and impacts.",
            music="Needle-drop songs as scene identity.",
            silence="The pause before someone reaches for a weapon.",
        ),
        voice_acting=VoiceActing(
            narrator="Cool, chapter-title voice.",
            dialogue="Musical rhythm, interruptions and monologues.",
            emotion="Calm on the surface, explosive underneath.",
            physicality="Chewing, smoking, leaning back.",
        ),
    ),
    DirectorPersona(
        key="ghibli",
        name="Studio Ghibli",
        best_for=("fantasy", "fairytale", "ya"),
        description="Gentle wonder, nature and quiet moments of magic.",
        sfx_philosophy="Natural, organic sounds that make the world feel alive.",
        voice_direction="Warm, sincere and curious.",
        pacing="Unhurried, leaving room to breathe between adventures.",
        production_notes="Small domestic moments matter as much as the big ones.",
        scene_structure="Calm, discovery, wonder, gentle resolution.",
        signature_elements=("wind through grass", "food shared with care", "kind spirits"),
        sound_design=SoundDesign(
            ambience="Wind, insects, rain and rustling leaves.",
            effects="Soft, tactile foley.",
            music="Piano and orchestra with a child-like melody.",
            silence="Quiet contemplation of scenery.",
        ),
        voice_acting=VoiceActing(
            narrator="Gentle and wistful.",
            dialogue="Natural and earnest.",
            emotion="Open-hearted.",
            physicality="Breathless excitement, small laughs.",
        ),
    ),
    DirectorPersona(
        key="nolan",
        name="Christopher Nolan",
        best_for=("scifi", "thriller"),
        description="Cerebral puzzles, time pressure and enormous scale.",
        sfx_philosophy="Deep, physical low end; sound as pressure.",
        voice_direction="Intense, expository under stress.",
        pacing="Cross-cut timelines converging on a climax.",
        production_notes="Keep the audience working to assemble the puzzle.",
        scene_structure="Parallel threads with a ticking clock.",
        signature_elements=("ticking clocks", "time manipulation", "practical scale"),
        sound_design=SoundDesign(
            ambience="Rumbling, enormous spaces.",
            effects="Heavy, realistic impacts.",
            music="Rising tones that never resolve.",
            silence="Abrupt cuts to silence after overwhelming sound.",
        ),
        voice_acting=VoiceActing(
            narrator="Serious and precise.",
            dialogue="Dense information delivered urgently.",
            emotion="Grief and obsession under control.",
            physicality="Strained, pressurised breathing.",
        ),
    ),
    DirectorPersona(
        key="spielberg",
        name="Steven Spielberg",
        best_for=("adventure", "scifi", "fantasy"),
        description="Wonder, family and adventure with universal appeal.",
        sfx_philosophy="Clear, emotionally guided sound that supports wonder.",
        voice_direction="Natural, heartfelt and accessible.",
        pacing="Classic three-act rhythm with set-piece peaks.",
        production_notes="Keep the emotional core readable for every listener.",
        scene_structure="Set-up, awe, danger, triumph.",
        signature_elements=("the awe shot", "children's perspective", "found family"),
        sound_design=SoundDesign(
            ambience="Vivid worlds that feel lived in.",
            effects="Realistic and well-timed.",
            music="Soaring orchestral themes.",
            silence="Held moments before the reveal.",
        ),
        voice_acting=VoiceActing(
            narrator="Warm and trustworthy.",
            dialogue="Natural overlapping family talk.",
            emotion="Sincere, never cynical.",
            physicality="Gasps of wonder, running breath.",
        ),
    ),
    DirectorPersona(
        key="lynch",
        name="David Lynch",
        best_for=("horror", "mystery"),
        description="Dream logic, unease and the uncanny beneath the ordinary.",
        sfx_philosophy="Industrial drones and hums that make rooms feel wrong.",
        voice_direction="Odd cadences, delivery slightly out of step.",
        pacing="Lingering and hypnotic, then suddenly disorienting.",
        production_notes="Never fully explain; let dread come from what is off.",
        scene_structure="Ordinary surface, slow distortion, unresolved dread.",
        signature_elements=("buzzing lights", "dream sequences", "doubles"),
        sound_design=SoundDesign(
            ambience="Low hums, wind and electrical buzz.",
            effects="Reversed or slowed sounds.",
            music="Languid jazz and dark synth pads.",
            silence="Uncomfortably long stillness.",
        ),
        voice_acting=VoiceActing(
            narrator="Calm, dreamlike.",
            dialogue="Non-sequiturs delivered sincerely.",
            emotion="Flat, then abruptly extreme.",
            physicality="Slow speech, odd breathing.",
        ),
    ),
)

PERSONAS_BY_KEY: Mapping[str, DirectorPersona] = MappingProxyType({p.key: p for p in PERSONAS})


def _normalize_key(value: str) -> str:
    return value.lower().replace(" ", "").replace("-", "").replace("_", "")


def _normalize_name(value: str) -> str:
    return value.lower().replace(" ", "").replace(".", "")


def resolve(key: Optional[str]) -> Optional[DirectorPersona]:
    """Look up a persona by key or display name.

    Unknown keys fall back to the default persona; only an empty key yields ``None``.
    """
    if not key:
        return None

    normalized = _normalize_key(key)
    for persona in PERSONAS:
        if _normalize_key(persona.key) == normalized:
            return persona

    for persona in PERSONAS:
        if normalized in _normalize_name(persona.name):
            return persona

    logger.warning("director_unknown | key=%s | fallback=%s", key, DEFAULT_PERSONA_KEY)
    return PERSONAS_BY_KEY[DEFAULT_PERSONA_KEY]


def get_for_genres(genres: Union[Mapping[str, float], Iterable[str], None]) -> Optional[str]:
    """Pick the persona whose ``best_for`` genres carry the most weight.

    Accepts weighted genres (``{"thriller": 80}``) or a plain list of genre
    names.  The first persona in table order wins ties; ``None`` when no
    persona overlaps the genres.
    """
    if not genres:
        return None

    if isinstance(genres, Mapping):
        weighted = [(g.lower(), float(w)) for g, w in genres.items() if w and w > 0]
    else:
        weighted = [(g.lower(), 1.0) for g in genres]
    if not weighted:
        return None

    best_key = None
    best_score = 0.0
    for persona in PERSONAS:
        score = sum(weight for genre, weight in weighted if genre in persona.best_for)
        if score > best_score:
            best_score = score
            best_key = persona.key

    return best_key


def list_personas() -> list[dict]:
    return [
        {
            "key": p.key,
            "name": p.name,
            "description": p.description,
            "best_for": list(p.best_for),
        }
        for p in PERSONAS
    ]


_MINIMAL_TAGS_SECTION = """
**MINIMIZE SPEECH ATTRIBUTION**
Listeners hear a different voice for every character, so "he said / she replied" is redundant.
Replace attribution with action beats that reveal character:

BAD: "I don't understand," Sarah said sadly.
GOOD: "I don't understand." Sarah's shoulders slumped, her finger tracing the rim of her empty cup.

BAD: "We need to leave now," Marcus replied urgently.
GOOD: "We need to leave now." Marcus was already gathering his things, eyes on the door.

Keep an explicit tag only for the first line of a long exchange, scenes with three or more
speakers, and whispers or shouts that change delivery."""

_RICH_TAGS_SECTION = """
**RICH DELIVERY DESCRIPTORS**
Each voice actor needs emotional direction. Write speech tags that direct the performance:

BAD: "I don't know," she said.
GOOD: "I don't know," she whispered, her voice catching on the words.

BAD: "Get out!" he yelled.
GOOD: "Get out!" The words tore from his throat, raw with betrayal.

Useful cues: vocal quality (hoarse, clipped, lilting), emotional undertone (through gritted
teeth), physical influence (after a shaky inhale) and subtext (forcing a lightness he didn't feel)."""


def build_guidance(preferences: Mapping | None, persona: Optional[DirectorPersona] = None) -> str:
    """Compile the voice-acted writing guidance for *persona*.

    Returns an empty string unless multi-voice narration is enabled.
    """
    if not preferences or not preferences.get("multi_voice"):
        return ""

    director = persona or PERSONAS_BY_KEY[DEFAULT_PERSONA_KEY]
    tags_section = (
        _MINIMAL_TAGS_SECTION if preferences.get("hide_speech_tags") is True
        else _RICH_TAGS_SECTION
    )
    signature = "\n".join(f"- {element}" for element in director.signature_elements)

    return f"""
== VOICE-ACTED AUDIOBOOK WRITING STYLE ({director.name} Direction) ==
This story uses multiple voice actors; every character has a distinct voice.
Write like an audiobook script where listeners hear who is speaking.
{tags_section}

GENERAL PRINCIPLES:
1. Dialogue must be speakable aloud.
2. Vary sentence rhythm between short lines and flowing thoughts.
3. Give each character a distinct speech pattern.
4. Use natural contractions in casual speech.

## Production Director: {director.name}

### Voice Acting Direction
- NARRATOR: {director.voice_acting.narrator}
- DIALOGUE: {director.voice_acting.dialogue}
- EMOTION: {director.voice_acting.emotion}
- PHYSICALITY: {director.voice_acting.physicality}

### Sound Design
- AMBIENCE: {director.sound_design.ambience}
- EFFECTS: {director.sound_design.effects}
- MUSIC: {director.sound_design.music}
- SILENCE: {director.sound_design.silence}

### Scene Pacing
{director.pacing}

### Scene Structure
{director.scene_structure}

### Signature Elements
{signature}
"""
