"""
Story bible record schemas.

These Pydantic models are the normalized shape of everything the extraction
pipeline emits.  Raw LLM output is fed straight into ``model_validate``; the
``mode="before"`` validators substitute documented defaults for anything
missing, null or mistyped, so a record never carries an undefined field.

Usage:
    from storyteller.schemas import Item

    item = Item.model_validate({"name": "Excalibur", "item_type": "WEAPON"})
    item.rarity      # "common"
    item.item_type   # "weapon"
"""
from __future__ import annotations

from typing import Any, Iterable, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

Confidence = Literal["high", "medium", "low"]
CONFIDENCE_RANK = {"low": 1, "medium": 2, "high": 3}


# ---------------------------------------------------------------------------
# Coercion helpers
# ---------------------------------------------------------------------------

def dedupe_casefold(values: Iterable[Any]) -> List[str]:
    """Drop blanks and case-insensitive duplicates; the first spelling wins."""
    seen = set()
    out = []
    for value in values:
        if value is None or isinstance(value, (dict, list)):
            continue
        text = str(value).strip()
        key = text.lower()
        if not text or key in seen:
            continue
        seen.add(key)
        out.append(text)
    return out


def _as_list(v: Any) -> List[str]:
    return dedupe_casefold(v) if isinstance(v, list) else []


def _as_optional_str(v: Any) -> Optional[str]:
    if v is None or isinstance(v, (dict, list)):
        return None
    text = str(v).strip()
    return text or None


def _as_str(v: Any) -> str:
    return _as_optional_str(v) or ""


def _as_bool(v: Any) -> bool:
    return v is True or (isinstance(v, str) and v.strip().lower() == "true")


def _one_of(v: Any, allowed: Iterable[str], default: str) -> str:
    if isinstance(v, str) and v.strip().lower() in allowed:
        return v.strip().lower()
    return default


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------

class ExtractedRecord(BaseModel):
    """Fields every extracted record carries."""
    model_config = ConfigDict(extra="ignore")

    confidence: Confidence = "high"
    importance: int = Field(default=50, ge=0, le=100)
    source_chunk_index: Optional[int] = None

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, v: Any) -> str:
        return _one_of(v, CONFIDENCE_RANK, "high")

    @field_validator("importance", mode="before")
    @classmethod
    def _importance(cls, v: Any) -> int:
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            return 50
        return max(0, min(100, int(v)))


# ---------------------------------------------------------------------------
# Characters
# ---------------------------------------------------------------------------

GENDERS = ("male", "female", "non-binary", "unknown")
AGE_GROUPS = ("child", "teen", "young_adult", "adult", "middle_aged", "elderly", "unknown")
ROLES = ("protagonist", "antagonist", "supporting", "minor", "mentioned")
ROLE_PRIORITY = {"protagonist": 5, "antagonist": 4, "supporting": 3, "minor": 2, "mentioned": 1}


class DeathDetails(BaseModel):
    model_config = ConfigDict(extra="ignore")

    cause: str = "unknown"
    timing: Optional[str] = None
    location: Optional[str] = None
    killer: Optional[str] = None
    circumstances: Optional[str] = None
    impact: Optional[str] = None
    body_status: str = "unknown"

    @field_validator("cause", "body_status", mode="before")
    @classmethod
    def _unknown(cls, v: Any) -> str:
        return _as_optional_str(v) or "unknown"

    @field_validator("timing", "location", "killer", "circumstances", "impact", mode="before")
    @classmethod
    def _text(cls, v: Any) -> Optional[str]:
        return _as_optional_str(v)


class Relationship(BaseModel):
    model_config = ConfigDict(extra="ignore")

    to: str
    type: str = "unknown"
    notes: Optional[str] = None

    @field_validator("to", "type", mode="before")
    @classmethod
    def _required(cls, v: Any) -> str:
        return _as_str(v) or "unknown"


class FamilyMember(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    relation: Optional[str] = None
    status: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, v: Any) -> str:
        return _as_str(v)

    @field_validator("relation", "status", mode="before")
    @classmethod
    def _text(cls, v: Any) -> Optional[str]:
        return _as_optional_str(v)


def relationship_key(rel: Any) -> str:
    """``to|type`` identity used to de-duplicate relationships."""
    if isinstance(rel, Relationship):
        to, kind = rel.to, rel.type
    else:
        to, kind = _as_str(rel.get("to")), _as_str(rel.get("type")) or "unknown"
    return f"{to.lower()}|{kind}"


_CHARACTER_TEXT_FIELDS = (
    "appearance", "clothing_style", "physical_condition", "personality", "values", "fears",
    "flaws", "strengths", "backstory", "education", "origin", "motivations", "secrets",
    "internal_conflicts", "external_conflicts", "dialogue_style", "voice_description",
    "character_arc", "symbolic_role", "extraction_notes",
)
_CHARACTER_SCALAR_FIELDS = (
    "display_name", "age_specific", "companion_to", "faction_allegiance", "occupation",
    "social_status", "first_appearance_context", "vital_status_summary",
)
_CHARACTER_LIST_FIELDS = (
    "aliases", "traits", "former_occupations", "abilities", "skills", "weaknesses",
    "signature_moves", "enemies", "allies", "romantic_interests",
)


class Character(ExtractedRecord):
    # Identity
    name: str
    display_name: Optional[str] = None
    aliases: List[str] = Field(default_factory=list)
    gender: str = "unknown"
    age_group: str = "unknown"
    age_specific: Optional[str] = None
    species: str = "human"
    is_animal_companion: bool = False
    companion_to: Optional[str] = None

    # Status & role
    role: str = "mentioned"
    is_alive: Optional[bool] = None
    is_deceased: bool = False
    vital_status_summary: Optional[str] = None
    death_details: Optional[DeathDetails] = None
    is_historical: bool = False
    faction_allegiance: Optional[str] = None

    # Description
    description: str = ""
    appearance: Optional[str] = None
    clothing_style: Optional[str] = None
    physical_condition: Optional[str] = None
    personality: Optional[str] = None
    traits: List[str] = Field(default_factory=list)
    values: Optional[str] = None
    fears: Optional[str] = None
    flaws: Optional[str] = None
    strengths: Optional[str] = None

    # Background
    backstory: Optional[str] = None
    occupation: Optional[str] = None
    former_occupations: List[str] = Field(default_factory=list)
    social_status: Optional[str] = None
    education: Optional[str] = None
    origin: Optional[str] = None

    # Abilities
    abilities: List[str] = Field(default_factory=list)
    skills: List[str] = Field(default_factory=list)
    weaknesses: List[str] = Field(default_factory=list)
    signature_moves: List[str] = Field(default_factory=list)

    # Psychology
    motivations: Optional[str] = None
    secrets: Optional[str] = None
    internal_conflicts: Optional[str] = None
    external_conflicts: Optional[str] = None

    # Social
    relationships: List[Relationship] = Field(
        default_factory=list,
        validation_alias=AliasChoices("relationships", "relationships_mentioned"),
    )
    enemies: List[str] = Field(default_factory=list)
    allies: List[str] = Field(default_factory=list)
    romantic_interests: List[str] = Field(default_factory=list)
    family: List[FamilyMember] = Field(default_factory=list)

    # Narrative
    dialogue_style: Optional[str] = None
    voice_description: Optional[str] = None
    first_appearance_context: Optional[str] = None
    character_arc: Optional[str] = None
    symbolic_role: Optional[str] = None
    extraction_notes: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, v: Any) -> str:
        return _as_str(v)

    @field_validator("description", mode="before")
    @classmethod
    def _description(cls, v: Any) -> str:
        return _as_str(v)

    @field_validator(*_CHARACTER_TEXT_FIELDS, *_CHARACTER_SCALAR_FIELDS, mode="before")
    @classmethod
    def _optional_text(cls, v: Any) -> Optional[str]:
        return _as_optional_str(v)

    @field_validator(*_CHARACTER_LIST_FIELDS, mode="before")
    @classmethod
    def _lists(cls, v: Any) -> List[str]:
        return _as_list(v)

    @field_validator("gender", mode="before")
    @classmethod
    def _gender(cls, v: Any) -> str:
        return _one_of(v, GENDERS, "unknown")

    @field_validator("age_group", mode="before")
    @classmethod
    def _age_group(cls, v: Any) -> str:
        return _one_of(v, AGE_GROUPS, "unknown")

    @field_validator("species", mode="before")
    @classmethod
    def _species(cls, v: Any) -> str:
        return _as_optional_str(v) or "human"

    @field_validator("role", mode="before")
    @classmethod
    def _role(cls, v: Any) -> str:
        return _one_of(v, ROLES, "mentioned")

    @field_validator("is_animal_companion", "is_deceased", "is_historical", mode="before")
    @classmethod
    def _flags(cls, v: Any) -> bool:
        return _as_bool(v)

    @field_validator("is_alive", mode="before")
    @classmethod
    def _alive(cls, v: Any) -> Optional[bool]:
        return v if isinstance(v, bool) else None

    @field_validator("death_details", mode="before")
    @classmethod
    def _death(cls, v: Any) -> Any:
        return v if isinstance(v, dict) else None

    @field_validator("relationships", mode="before")
    @classmethod
    def _relationships(cls, v: Any) -> List[dict]:
        if not isinstance(v, list):
            return []
        seen = set()
        out = []
        for rel in v:
            if not isinstance(rel, dict) or not _as_optional_str(rel.get("to")):
                continue
            key = relationship_key(rel)
            if key not in seen:
                seen.add(key)
                out.append(rel)
        return out

    @field_validator("family", mode="before")
    @classmethod
    def _family(cls, v: Any) -> List[dict]:
        if not isinstance(v, list):
            return []
        seen = set()
        out = []
        for member in v:
            if not isinstance(member, dict) or not _as_optional_str(member.get("name")):
                continue
            key = str(member["name"]).strip().lower()
            if key not in seen:
                seen.add(key)
                out.append(member)
        return out


# ---------------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------------

ITEM_TYPES = {
    "weapon": "Swords, guns, bows, staffs, wands",
    "armor": "Shields, helmets, chainmail, robes",
    "vehicle": "Cars, ships, aircraft, spaceships, wagons, unnamed mounts",
    "tool": "Lockpicks, rope, compass, medical equipment",
    "artifact": "Magical or legendary items with special properties",
    "book": "Tomes, scrolls, spellbooks, letters",
    "clothing": "Non-protective garments, jewelry, accessories",
    "consumable": "Potions, food, ammunition, fuel",
    "container": "Bags, chests, boxes small enough to carry",
    "key": "Keys, keycards, access tokens",
    "currency": "Coins, gems, valuable trade goods",
    "document": "Maps, contracts, deeds, certificates",
    "misc": "Anything else physical that can be owned",
}


class Item(ExtractedRecord):
    name: str = "Unnamed Item"
    item_type: str = "misc"
    subtype: Optional[str] = None
    description: str = ""
    appearance: Optional[str] = None
    size: str = "medium"
    material: Optional[str] = None
    condition: str = "good"
    magical_properties: Optional[str] = None
    mundane_properties: Optional[str] = None
    abilities: List[str] = Field(default_factory=list)
    limitations: List[str] = Field(default_factory=list)
    rarity: str = "common"
    value_description: Optional[str] = None
    current_owner: Optional[str] = None
    current_location: Optional[str] = None
    origin: Optional[str] = None
    creator: Optional[str] = None
    history: Optional[str] = None
    stats_json: Optional[dict] = None
    attunement_required: bool = False

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, v: Any) -> str:
        return _as_optional_str(v) or "Unnamed Item"

    @field_validator("item_type", mode="before")
    @classmethod
    def _type(cls, v: Any) -> str:
        return _one_of(v, ITEM_TYPES, "misc")

    @field_validator("description", mode="before")
    @classmethod
    def _description(cls, v: Any) -> str:
        return _as_str(v)

    @field_validator("size", mode="before")
    @classmethod
    def _size(cls, v: Any) -> str:
        return _as_optional_str(v) or "medium"

    @field_validator("condition", mode="before")
    @classmethod
    def _condition(cls, v: Any) -> str:
        return _as_optional_str(v) or "good"

    @field_validator("rarity", mode="before")
    @classmethod
    def _rarity(cls, v: Any) -> str:
        return _as_optional_str(v) or "common"

    @field_validator("subtype", "appearance", "material", "magical_properties", "mundane_properties",
                     "value_description", "current_owner", "current_location", "origin", "creator",
                     "history", mode="before")
    @classmethod
    def _optional_text(cls, v: Any) -> Optional[str]:
        return _as_optional_str(v)

    @field_validator("abilities", "limitations", mode="before")
    @classmethod
    def _lists(cls, v: Any) -> List[str]:
        return _as_list(v)

    @field_validator("stats_json", mode="before")
    @classmethod
    def _stats(cls, v: Any) -> Optional[dict]:
        return v if isinstance(v, dict) else None

    @field_validator("attunement_required", mode="before")
    @classmethod
    def _attunement(cls, v: Any) -> bool:
        return _as_bool(v)


# ---------------------------------------------------------------------------
# Factions
# ---------------------------------------------------------------------------

FACTION_TYPES = {
    "guild": "Professional organizations (thieves guild, merchant guild)",
    "kingdom": "Monarchies, empires, nations",
    "cult": "Religious extremists, secret worshippers",
    "company": "Businesses, corporations, trading companies",
    "military": "Armies, navies, mercenary companies",
    "tribe": "Nomadic groups, clans, native peoples",
    "gang": "Criminal organizations, street gangs",
    "religion": "Churches, temples, religious orders",
    "school": "Academies, wizard colleges, martial arts schools",
    "family": "Noble houses, crime families, dynasties",
    "alliance": "Coalitions, treaties, temporary unions",
    "government": "Councils, senates, democracies",
    "order": "Knights, paladins, monastic orders",
    "resistance": "Rebel groups, freedom fighters",
    "secret_society": "Hidden organizations, conspiracies",
}


class Faction(ExtractedRecord):
    name: str = "Unnamed Faction"
    faction_type: str = "guild"
    alignment: Optional[str] = None
    description: str = ""
    motto: Optional[str] = None
    symbol_description: Optional[str] = None
    leadership_type: Optional[str] = None
    leader_name: Optional[str] = None
    hierarchy: Optional[str] = None
    member_count: Optional[str] = None
    goals: List[str] = Field(default_factory=list)
    methods: List[str] = Field(default_factory=list)
    values: List[str] = Field(default_factory=list)
    secrets: Optional[str] = None
    allies: List[str] = Field(default_factory=list)
    enemies: List[str] = Field(default_factory=list)
    headquarters: Optional[str] = None
    territories: List[str] = Field(default_factory=list)
    resources: List[str] = Field(default_factory=list)
    founding: Optional[str] = None
    history: Optional[str] = None
    current_state: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, v: Any) -> str:
        return _as_optional_str(v) or "Unnamed Faction"

    @field_validator("faction_type", mode="before")
    @classmethod
    def _type(cls, v: Any) -> str:
        return _one_of(v, FACTION_TYPES, "guild")

    @field_validator("description", mode="before")
    @classmethod
    def _description(cls, v: Any) -> str:
        return _as_str(v)

    @field_validator("alignment", "motto", "symbol_description", "leadership_type", "leader_name",
                     "hierarchy", "member_count", "secrets", "headquarters", "founding", "history",
                     "current_state", mode="before")
    @classmethod
    def _optional_text(cls, v: Any) -> Optional[str]:
        return _as_optional_str(v)

    @field_validator("goals", "methods", "values", "allies", "enemies", "territories", "resources",
                     mode="before")
    @classmethod
    def _lists(cls, v: Any) -> List[str]:
        return _as_list(v)


# ---------------------------------------------------------------------------
# Lore
# ---------------------------------------------------------------------------

LORE_TYPES = {
    "event": "Historical or future events (wars, coronations, disasters)",
    "rule": "World rules, natural laws, magic system rules",
    "history": "Historical information, founding stories, past eras",
    "legend": "Myths, legends, prophecies, folklore",
    "custom": "Cultural customs, traditions, holidays, practices",
    "species_info": "General information about species or races (not individual creatures)",
    "magic_theory": "How magic works, magical laws, spell theory",
    "religion_doctrine": "Religious beliefs, doctrines, afterlife concepts",
    "language": "Languages, scripts, communication systems",
    "economics": "Trade, currency, economic systems",
    "technology": "How technology works, tech levels, scientific principles",
    "cosmology": "Universe structure, planes of existence, creation myths",
    "timeline": "Historical timelines, eras, ages",
}


class LoreRecord(ExtractedRecord):
    entry_type: str = "custom"
    title: str = "Untitled Lore"
    content: str = ""
    related_characters: List[str] = Field(default_factory=list)
    related_locations: List[str] = Field(default_factory=list)
    related_items: List[str] = Field(default_factory=list)
    related_factions: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    time_relevance: str = "timeless"
    is_secret: bool = False

    @field_validator("entry_type", mode="before")
    @classmethod
    def _type(cls, v: Any) -> str:
        return _one_of(v, LORE_TYPES, "custom")

    @field_validator("title", mode="before")
    @classmethod
    def _title(cls, v: Any) -> str:
        return _as_optional_str(v) or "Untitled Lore"

    @field_validator("content", mode="before")
    @classmethod
    def _content(cls, v: Any) -> str:
        return _as_str(v)

    @field_validator("related_characters", "related_locations", "related_items", "related_factions",
                     "tags", mode="before")
    @classmethod
    def _lists(cls, v: Any) -> List[str]:
        return _as_list(v)

    @field_validator("time_relevance", mode="before")
    @classmethod
    def _time(cls, v: Any) -> str:
        return _as_optional_str(v) or "timeless"

    @field_validator("is_secret", mode="before")
    @classmethod
    def _secret(cls, v: Any) -> bool:
        return _as_bool(v)


# ---------------------------------------------------------------------------
# Locations
# ---------------------------------------------------------------------------

LOCATION_TYPES = (
    "planet", "continent", "country", "region", "city", "town", "village", "district",
    "neighborhood", "building", "floor", "room", "wilderness", "landmark", "vehicle", "other",
)


class Location(ExtractedRecord):
    name: str = "Unnamed Location"
    location_type: str = "other"
    description: str = ""
    atmosphere: Optional[str] = None
    parent_name: Optional[str] = None
    significance: Optional[str] = None
    features: List[str] = Field(default_factory=list)
    associated_characters: List[str] = Field(default_factory=list)
    events_here: List[str] = Field(default_factory=list)
    is_real_world: bool = False

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, v: Any) -> str:
        return _as_optional_str(v) or "Unnamed Location"

    @field_validator("location_type", mode="before")
    @classmethod
    def _type(cls, v: Any) -> str:
        return _one_of(v, LOCATION_TYPES, "other")

    @field_validator("description", mode="before")
    @classmethod
    def _description(cls, v: Any) -> str:
        return _as_str(v)

    @field_validator("atmosphere", "parent_name", "significance", mode="before")
    @classmethod
    def _optional_text(cls, v: Any) -> Optional[str]:
        return _as_optional_str(v)

    @field_validator("features", "associated_characters", "events_here", mode="before")
    @classmethod
    def _lists(cls, v: Any) -> List[str]:
        # Features sometimes arrive as one comma-separated string.
        if isinstance(v, str):
            return dedupe_casefold(v.split(","))
        return _as_list(v)

    @field_validator("is_real_world", mode="before")
    @classmethod
    def _real(cls, v: Any) -> bool:
        return _as_bool(v)


# ---------------------------------------------------------------------------
# World
# ---------------------------------------------------------------------------

_WORLD_TEXT_FIELDS = (
    "genre", "time_period", "technology_level", "magic_system", "society_structure",
    "economy", "tone", "mood", "visual_style",
)
_WORLD_LIST_FIELDS = (
    "sub_genres", "technologies", "magic_rules", "governments", "cultures", "religions",
    "themes", "unique_elements", "world_rules", "conflicts",
)


class WorldInfo(ExtractedRecord):
    name: str = "Unnamed World"
    description: str = ""
    genre: Optional[str] = None
    sub_genres: List[str] = Field(default_factory=list)
    time_period: Optional[str] = None
    technology_level: Optional[str] = None
    technologies: List[str] = Field(default_factory=list)
    magic_system: Optional[str] = None
    magic_rules: List[str] = Field(default_factory=list)
    society_structure: Optional[str] = None
    governments: List[str] = Field(default_factory=list)
    cultures: List[str] = Field(default_factory=list)
    religions: List[str] = Field(default_factory=list)
    economy: Optional[str] = None
    tone: Optional[str] = None
    mood: Optional[str] = None
    themes: List[str] = Field(default_factory=list)
    visual_style: Optional[str] = None
    unique_elements: List[str] = Field(default_factory=list)
    world_rules: List[str] = Field(default_factory=list)
    conflicts: List[str] = Field(default_factory=list)

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, v: Any) -> str:
        return _as_optional_str(v) or "Unnamed World"

    @field_validator("description", mode="before")
    @classmethod
    def _description(cls, v: Any) -> str:
        return _as_str(v)

    @field_validator(*_WORLD_TEXT_FIELDS, mode="before")
    @classmethod
    def _optional_text(cls, v: Any) -> Optional[str]:
        return _as_optional_str(v)

    @field_validator(*_WORLD_LIST_FIELDS, mode="before")
    @classmethod
    def _lists(cls, v: Any) -> List[str]:
        return _as_list(v)
