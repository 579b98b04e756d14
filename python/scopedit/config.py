from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ScopeditSettings(BaseSettings):
    """Engine configuration.

    Every field can be overridden from the environment with the ``SCOPEDIT_``
    prefix, e.g. ``SCOPEDIT_CONTEXT_CHARS=400``.
    """

    proposed_color: str = Field(default="89D185", description="Font colour (hex RGB) of proposed text")
    removed_color: str = Field(default="F48771", description="Font colour (hex RGB) of struck-through old text")

    context_chars: int = Field(default=800, ge=0, description="Snippet radius returned by reads")
    preview_chars: int = Field(default=500, ge=0, description="Scope preview attached to NotFound failures")
    article_preview_chars: int = Field(default=2000, ge=0, description="Article preview handed to the agent")
    window_chars: int = Field(default=5, ge=0, description="Context window for the paragraph-scan re-search")
    semantic_top_k: int = Field(default=3, ge=1, description="Candidate chunks kept from the semantic ranker")

    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=False)

    model_config = SettingsConfigDict(extra="ignore", env_prefix="SCOPEDIT_")

    @field_validator("proposed_color", "removed_color")
    @classmethod
    def _normalize_hex(cls, value: str) -> str:
        value = value.strip().lstrip("#").upper()
        if len(value) != 6 or any(c not in "0123456789ABCDEF" for c in value):
            raise ValueError(f"expected a 6 digit hex colour, got {value!r}")
        return value


@lru_cache(maxsize=1)
def get_settings() -> ScopeditSettings:
    return ScopeditSettings()
