"""
Granular content-intensity instructions.

Every content dimension is a 0-100 slider.  Coarse labels ("low", "high")
make models write near-identical text for 60 and 75, so each dimension is a
ten-band table: the band picks the base phrase and the position inside the
band decides how many of the band's ordered modifiers are appended.  Moving a
slider up never produces a milder instruction.
"""
from __future__ import annotations

import dataclasses
import math
from types import MappingProxyType
from typing import Mapping


@dataclasses.dataclass(frozen=True)
class IntensityTier:
    max: int
    base: str
    modifiers: tuple[str, ...] = ()


@dataclasses.dataclass(frozen=True)
class TierSelection:
    dimension: str
    level: float
    band_index: int
    base: str
    modifiers: tuple[str, ...]

    @property
    def modifier_count(self) -> int:
        return len(self.modifiers)


def _tiers(*rows: tuple[int, str, tuple[str, ...]]) -> tuple[IntensityTier, ...]:
    return tuple(IntensityTier(max_, base, mods) for max_, base, mods in rows)


_TABLES: dict[str, tuple[IntensityTier, ...]] = {
    "violence": _tiers(
        (10, "conflict is verbal or implied, nobody is physically hurt",
         ("tension resolves without contact",)),
        (20, "light scuffles and pushing with no lasting injury",
         ("bruises mentioned in passing", "threats carry some weight")),
        (30, "brief fights with minor injuries described plainly",
         ("a punch lands with visible effect", "characters feel pain afterwards", "danger feels real")),
        (40, "clear combat with wounds that matter to the plot",
         ("bleeding is acknowledged", "weapons are drawn and used", "injuries slow characters down")),
        (50, "sustained action violence with serious injuries",
         ("blows are described beat by beat", "named characters can be badly hurt", "the cost of fighting lingers")),
        (60, "brutal fights where characters may die on the page",
         ("deaths are shown rather than reported", "impact and pain are vivid", "survivors carry visible damage")),
        (70, "intense, graphic violence with lasting consequences",
         ("wounds are described in physical detail", "violence shocks other characters", "nobody is safe")),
        (80, "savage, unflinching violence that dominates scenes",
         ("prolonged suffering is depicted", "killing is personal and close", "the narration lingers on aftermath")),
        (90, "extreme violence approaching torture",
         ("deliberate cruelty drives the scene", "pain is inflicted methodically", "victims' helplessness is explicit")),
        (100, "maximum-intensity violence with no softening",
         ("torture and massacre may be depicted directly", "every consequence is rendered in full", "the reader is given no relief")),
    ),
    "gore": _tiers(
        (10, "no blood or bodily damage is described", ()),
        (20, "a little blood, mentioned briefly", ("scrapes and cuts",)),
        (30, "visible blood from injuries", ("wounds are named but not dwelt on", "clean-up is implied")),
        (40, "bloody wounds described in a sentence or two", ("torn clothing and skin", "blood on hands and floors")),
        (50, "graphic wounds with concrete physical detail", ("bone and muscle may be mentioned", "smell and texture appear")),
        (60, "messy, visceral injuries", ("open wounds are described", "characters react with nausea", "blood pools and spreads")),
        (70, "heavy gore with anatomical detail", ("organs may be glimpsed", "dismemberment is possible", "descriptions slow down on damage")),
        (80, "grisly body horror", ("mutilation is shown", "corpses are described closely", "decay and fluids appear")),
        (90, "extreme gore lingered on deliberately", ("the camera does not cut away", "damage is catalogued in detail", "horror comes from the flesh itself")),
        (100, "maximum gore, splatter-level explicitness", ("every wound is rendered", "nothing is left to imagination", "gore is a centrepiece of scenes")),
    ),
    "romance": _tiers(
        (10, "no romantic content", ()),
        (20, "a hint of attraction", ("lingering glances",)),
        (30, "mild romantic subplot", ("shy compliments", "awkward closeness")),
        (40, "clear mutual attraction", ("flirting is a recurring beat", "jealousy or longing appears")),
        (50, "romance is a major thread", ("a first kiss may happen", "characters confide feelings")),
        (60, "passionate romance", ("kisses are described with feeling", "physical closeness matters", "desire is named")),
        (70, "romance drives the plot", ("relationship turning points anchor chapters", "intimacy is emotionally charged", "grand gestures")),
        (80, "intense, all-consuming romance", ("yearning dominates inner monologue", "sensual tension in most scenes", "love shapes every choice")),
        (90, "romance-first storytelling", ("heightened declarations", "intimate scenes are central", "obstacles exist to deepen longing")),
        (100, "maximum romantic intensity", ("every scene returns to the relationship", "emotions are operatic", "the love story is the story")),
    ),
    "adult_content": _tiers(
        (10, "all-ages content only", ()),
        (20, "mild mature themes mentioned in passing", ("off-page drinking",)),
        (30, "teen-level mature themes", ("references to vice", "mild innuendo")),
        (40, "mature themes handled plainly", ("substance use is shown", "morally grey choices")),
        (50, "adult situations with discretion", ("fade-to-black intimacy", "crime and addiction on the page")),
        (60, "clearly adult storytelling", ("sexual situations are acknowledged", "vice has texture and detail", "adult consequences")),
        (70, "strong adult content", ("intimacy is shown up to a point", "drug use is depicted directly", "dark adult themes recur")),
        (80, "explicitly adult material", ("intimate scenes are described", "taboo subjects are explored", "no protective framing")),
        (90, "heavy adult content", ("explicit scenes are part of the story", "frank physicality", "decadence is a theme")),
        (100, "maximum adult content allowed", ("explicit material may be central", "nothing is faded out", "adult themes saturate the narrative")),
    ),
    "language": _tiers(
        (10, "clean language, no profanity", ()),
        (20, "very mild exclamations", ("darn, heck",)),
        (30, "occasional mild swearing", ("damn and hell under stress", "insults stay tame")),
        (40, "moderate profanity when emotions run high", ("cursing reveals character", "crude humour")),
        (50, "regular profanity", ("strong words in arguments", "slang is rough")),
        (60, "frequent strong language", ("f-words appear in heated moments", "cursing is natural speech", "harsh insults")),
        (70, "pervasive profanity", ("most tense dialogue contains swearing", "creative vulgarity", "crude descriptions")),
        (80, "relentlessly coarse language", ("characters swear casually", "graphic insults", "vulgar narration voice")),
        (90, "extreme language", ("the harshest words are used freely", "obscene invective", "no verbal restraint")),
        (100, "maximum profanity", ("saturation-level swearing", "every register of vulgarity", "language itself is a weapon")),
    ),
    "scariness": _tiers(
        (10, "cosy, nothing frightening", ()),
        (20, "gentle spookiness", ("a creaking door",)),
        (30, "mild suspense", ("shadows and strange sounds", "a safe resolution is expected")),
        (40, "real tension", ("characters are afraid", "a threat is glimpsed")),
        (50, "genuinely scary moments", ("jump scares land", "the threat is close")),
        (60, "sustained dread", ("safety is never certain", "the unknown is menacing", "fear lingers after scenes")),
        (70, "frightening horror", ("disturbing imagery", "characters break under fear", "the threat wins sometimes")),
        (80, "intense terror", ("helplessness is explicit", "psychological horror seeps in", "no place is safe")),
        (90, "nightmarish horror", ("reality feels wrong", "dread builds without release", "terror is personal")),
        (100, "maximum terror", ("unrelenting horror", "hope is systematically removed", "the reader should feel unsafe")),
    ),
    "bleakness": _tiers(
        (10, "hopeful and warm", ()),
        (20, "mostly upbeat with small setbacks", ("losses are temporary",)),
        (30, "some sadness balanced by hope", ("a meaningful loss", "friends offer comfort")),
        (40, "bittersweet tone", ("victories have costs", "melancholy moments")),
        (50, "serious, weighty tone", ("grief is explored", "not everything is fixed")),
        (60, "dark and heavy", ("failures compound", "characters lose faith", "hope is fragile")),
        (70, "grim storytelling", ("tragedy strikes main characters", "moral compromise is common", "endings may be unhappy")),
        (80, "deeply bleak", ("despair dominates", "institutions fail everyone", "kindness is punished")),
        (90, "nihilistic darkness", ("meaning itself is questioned", "loss upon loss", "no rescue comes")),
        (100, "maximum bleakness", ("relentless tragedy", "hope is extinguished", "the ending offers no consolation")),
    ),
    "sexual_violence": _tiers(
        (10, "absent entirely", ()),
        (20, "exists only as distant backstory", ("never described",)),
        (30, "referenced indirectly", ("a survivor's trauma is acknowledged", "no details")),
        (40, "acknowledged as a past event", ("impact on the survivor is explored", "handled with care")),
        (50, "a present threat in the story", ("menace without depiction", "survivor perspective centred")),
        (60, "occurs off-page within the plot", ("aftermath is shown honestly", "consequences are serious")),
        (70, "implied on-page, cut away before detail", ("the scene's horror is clear", "focus stays on trauma, not spectacle")),
        (80, "depicted briefly and non-graphically", ("non-consent is unmistakable", "long-term trauma is portrayed", "never eroticised")),
        (90, "depicted directly as a central horror", ("the narrative confronts it", "survivor agency in the aftermath", "never eroticised")),
        (100, "unflinching depiction within the story's horror", ("never eroticised", "full weight of trauma and consequence", "the story does not look away")),
    ),
    "explicitness": _tiers(
        (10, "no sexual content", ()),
        (20, "romance stays at hand-holding", ("chaste affection",)),
        (30, "kissing only", ("brief and tender", "door closes early")),
        (40, "implied intimacy", ("fade-to-black", "morning-after hints")),
        (50, "intimacy acknowledged with light description", ("sensual build-up", "the scene cuts before detail")),
        (60, "sensual scenes with moderate description", ("bodies and touch are described", "emotion leads", "tasteful language")),
        (70, "steamy scenes", ("more of the scene is shown", "physical detail increases", "desire is vocal")),
        (80, "explicit scenes", ("frank description", "scenes play out on the page", "anatomical language where natural")),
        (90, "highly explicit", ("detailed and extended scenes", "nothing is implied that can be shown", "heat is a focus")),
        (100, "maximum explicitness", ("fully explicit throughout", "no fade-outs", "intimacy is central to the narrative")),
    ),
    "sensuality": _tiers(
        (10, "no sensual focus", ()),
        (20, "occasional notice of attractiveness", ("a warm smile",)),
        (30, "light sensual description", ("scent and warmth", "noticing hands and eyes")),
        (40, "noticeable sensual awareness", ("touch lingers", "atmosphere is charged")),
        (50, "sensuality colours scenes", ("textures and closeness", "breath and heartbeat")),
        (60, "strongly sensual prose", ("the body is described with appreciation", "slow, tactile moments", "charged silences")),
        (70, "lush sensuality", ("every touch is noticed", "heat builds across scenes", "sensory overload")),
        (80, "intensely sensual", ("prose slows to savour sensation", "desire colours perception", "physical awareness is constant")),
        (90, "overwhelmingly sensual", ("sensation dominates narration", "intoxicating detail", "characters are ruled by feeling")),
        (100, "maximum sensuality", ("every scene is steeped in sensation", "the prose is languorous and rich", "nothing is cool or detached")),
    ),
}

DIMENSION_LABELS = MappingProxyType({
    "violence": "VIOLENCE",
    "gore": "GORE",
    "romance": "ROMANCE",
    "adult_content": "ADULT CONTENT",
    "language": "LANGUAGE",
    "scariness": "SCARINESS",
    "bleakness": "BLEAKNESS",
    "sexual_violence": "SEXUAL VIOLENCE",
    "explicitness": "EXPLICITNESS",
    "sensuality": "SENSUALITY",
})

COMPLIANCE_PREAMBLE = (
    "These intensity levels are exact targets on a 0-100 scale, not loose categories. "
    "Every point matters: 81% MUST be more intense than 80%, and 40% MUST read "
    "noticeably milder than 60%. Match each level precisely."
)


def _validate_tables(tables: Mapping[str, tuple[IntensityTier, ...]]) -> None:
    for dimension, tiers in tables.items():
        if not tiers:
            raise ValueError(f"intensity table '{dimension}' is empty")
        previous = 0
        for tier in tiers:
            if tier.max <= previous:
                raise ValueError(f"intensity table '{dimension}': max values must strictly increase")
            previous = tier.max
        if previous != 100:
            raise ValueError(f"intensity table '{dimension}': last band must end at 100")


_validate_tables(_TABLES)
INTENSITY_TABLES: Mapping[str, tuple[IntensityTier, ...]] = MappingProxyType(_TABLES)
DIMENSIONS = tuple(INTENSITY_TABLES)


def _clamp_level(level: float | int | None) -> float:
    try:
        value = float(level or 0)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(value):
        return 0.0
    return min(max(value, 0.0), 100.0)


def get_tier(dimension: str, level: float) -> TierSelection:
    """Select the band for *level* and the modifiers earned inside it."""
    tiers = INTENSITY_TABLES.get(dimension)
    if tiers is None:
        raise KeyError(f"unknown intensity dimension: {dimension}")

    value = _clamp_level(level)
    previous_max = 0
    for index, tier in enumerate(tiers):
        if tier.max >= value:
            span = tier.max - previous_max
            position = (value - previous_max) * 10 / span
            total = len(tier.modifiers)
            if total and position > 0:
                count = min(math.ceil(position / (10 / total)), total)
            else:
                count = 0
            return TierSelection(dimension, value, index, tier.base, tier.modifiers[:count])
        previous_max = tier.max

    # Unreachable after validation: the last band always ends at 100.
    raise ValueError(f"no intensity band covers {value} for {dimension}")


def get_instruction(dimension: str, level: float) -> str:
    value = _clamp_level(level)
    if value <= 0:
        return f"{DIMENSION_LABELS.get(dimension, dimension.upper())}: none at all."

    selection = get_tier(dimension, value)
    text = selection.base
    if selection.modifiers:
        text += "; " + "; ".join(selection.modifiers)
    return text


def build_intensity_block(levels: Mapping[str, float] | None) -> str:
    """Render every dimension above zero into a single prompt block.

    Returns an empty string when nothing is above zero.
    """
    if not levels:
        return ""

    lines = []
    for dimension in DIMENSIONS:
        value = _clamp_level(levels.get(dimension))
        if value <= 0:
            continue
        label = DIMENSION_LABELS[dimension]
        lines.append(f"- {label} ({value:g}%): {get_instruction(dimension, value)}")

    if not lines:
        return ""

    return "\n".join([
        "=== CONTENT INTENSITY CONTRACT ===",
        COMPLIANCE_PREAMBLE,
        *lines,
        "=== END CONTENT INTENSITY CONTRACT ===",
    ])
