"""Character directory: read-only cast lookup for one story.

Rosters come in two shapes (see storyplay.stories): flat `{id: Character}`
or grouped by faction `{faction: {id: Character}}`. Both are resolved once,
at load time, into a single flat id → Character map; grouped characters get
their faction from the group key when they don't declare one. Nothing
downstream branches on the shape.

Lookups never raise: `get()` returns None for unknown ids and `resolve()`
substitutes a placeholder so a dialogue line can always be labelled.
"""

from __future__ import annotations

from storyplay.models import Character
from storyplay.stories import FlatRoster, GroupedRoster, StoryDescriptor

UNKNOWN_CHARACTER = Character(
    id="unknown",
    name="알 수 없음",
    role="",
    personality="",
    avatar="N",
)


def flatten_roster(roster: FlatRoster | GroupedRoster) -> dict[str, Character]:
    """Resolve either roster shape into a single id → Character map."""
    if isinstance(roster, FlatRoster):
        return {cid: char.model_copy(update={"id": cid}) for cid, char in roster.characters.items()}

    flat: dict[str, Character] = {}
    for faction, members in roster.factions.items():
        for cid, char in members.items():
            update: dict = {"id": cid}
            if char.faction is None:
                update["faction"] = faction
            flat[cid] = char.model_copy(update=update)
    return flat


class CharacterDirectory:
    """Id → Character lookup, loaded once per story and never mutated."""

    def __init__(self, characters: dict[str, Character], playable: list[str] | None = None) -> None:
        self._characters = dict(characters)
        self._playable = [cid for cid in (playable or []) if cid in self._characters]

    @classmethod
    def load(cls, story: StoryDescriptor) -> CharacterDirectory:
        return cls(flatten_roster(story.roster), story.playable_characters)

    def get(self, character_id: str | None) -> Character | None:
        if not character_id:
            return None
        return self._characters.get(character_id.strip().lower())

    def resolve(self, character_id: str | None) -> Character:
        """Like get(), but falls back to the placeholder character."""
        return self.get(character_id) or UNKNOWN_CHARACTER

    def all(self) -> list[Character]:
        return list(self._characters.values())

    def by_faction(self, faction: str) -> list[Character]:
        return [c for c in self._characters.values() if c.faction == faction]

    def player_characters(self) -> list[Character]:
        return [self._characters[cid] for cid in self._playable]

    def match_player_character(self, text: str) -> Character | None:
        """Return the first playable character whose name or id occurs in text."""
        lowered = text.lower()
        for char in self.player_characters():
            if char.name.lower() in lowered or char.id.lower() in lowered:
                return char
        return None

    def __contains__(self, character_id: str) -> bool:
        return self.get(character_id) is not None

    def __len__(self) -> int:
        return len(self._characters)
