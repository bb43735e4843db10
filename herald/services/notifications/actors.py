from __future__ import annotations

from typing import Mapping, Protocol


DEFAULT_ACTOR = "Operator"
SYSTEM_ACTOR = "System"


class ActorResolver(Protocol):
    def resolve(self, user_id: str | int | None) -> str:
        ...


class StaticActorResolver:
    # Known ids map to display names; unknown ids fall back to the id itself, missing ids to "Operator".
    def __init__(self, display_names: Mapping[str, str] | None = None) -> None:
        self._display_names = {str(key): value for key, value in (display_names or {}).items()}

    def resolve(self, user_id: str | int | None) -> str:
        if user_id is None:
            return DEFAULT_ACTOR
        key = str(user_id).strip()
        if not key:
            return DEFAULT_ACTOR
        return self._display_names.get(key, key)
