"""
ResearcherProfile - Researcher metadata folded into refinement prompts.

Profile editing lives outside this engine; profiles are loaded read-only from a
YAML file so the orchestrator can personalise query refinement.
"""

from dataclasses import dataclass, field
from pathlib import Path

import yaml

from utils.logger import get_logger

logger = get_logger(__name__)

MAX_PROMPT_INTERESTS = 3


@dataclass(frozen=True)
class ResearcherProfile:
    """
    Attributes:
        user_id: Owning user identifier
        first_name: Used to address the researcher in prompts
        expertise_level: e.g. "beginner", "intermediate", "expert"
        interests: Primary research interests, most important first
    """

    user_id: str
    first_name: str | None = None
    expertise_level: str | None = None
    interests: tuple[str, ...] = field(default_factory=tuple)

    def prompt_block(self) -> str:
        """Render the profile as the context block used by refinement prompts."""
        lines = []
        if self.first_name:
            lines.append(f"Researcher: {self.first_name}")
        if self.interests:
            lines.append(
                "Primary research interests: " + ", ".join(self.interests[:MAX_PROMPT_INTERESTS])
            )
        if self.expertise_level:
            lines.append(f"Expertise level: {self.expertise_level}")
        return "\n".join(lines)


class ProfileDirectory:
    """Read-only lookup of researcher profiles keyed by user id."""

    def __init__(self, profiles: dict[str, ResearcherProfile] | None = None):
        self._profiles = dict(profiles or {})

    @classmethod
    def from_yaml(cls, path: str | None) -> "ProfileDirectory":
        if not path:
            return cls()
        profile_path = Path(path)
        if not profile_path.exists():
            logger.warning(
                "Researcher profile file not found",
                extra={"extra_fields": {"path": str(profile_path)}},
            )
            return cls()

        data = yaml.safe_load(profile_path.read_text(encoding="utf-8")) or {}
        profiles: dict[str, ResearcherProfile] = {}
        for user_id, entry in (data.get("profiles") or {}).items():
            entry = entry or {}
            profiles[str(user_id)] = ResearcherProfile(
                user_id=str(user_id),
                first_name=entry.get("first_name"),
                expertise_level=entry.get("expertise_level"),
                interests=tuple(entry.get("interests") or ()),
            )
        return cls(profiles)

    def get(self, user_id: str) -> ResearcherProfile:
        return self._profiles.get(user_id) or ResearcherProfile(user_id=user_id)
