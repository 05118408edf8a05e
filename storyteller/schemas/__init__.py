# Story bible record schemas
from .entities import (
    Character,
    DeathDetails,
    Relationship,
    FamilyMember,
    Item,
    Faction,
    LoreRecord,
    Location,
    WorldInfo,
    ExtractedRecord,
    # Vocabularies
    ITEM_TYPES,
    FACTION_TYPES,
    LORE_TYPES,
    LOCATION_TYPES,
    ROLE_PRIORITY,
    CONFIDENCE_RANK,
)

# Socket event validation
from .socket_events import (
    SocketMessage,
    ValidationOutcome,
    validate_event,
    VALID_EVENTS,
    MAX_MESSAGE_BYTES,
)
