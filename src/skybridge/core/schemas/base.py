"""Shared base for schemas that serialise with camelCase field names."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from skybridge.config.settings import get_settings


class CamelModel(BaseModel):
    """Accepts snake_case or camelCase input; dump with ``by_alias=True``."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def default_follow_lexicon() -> str:
    """Collection used when a request body omits ``followLexicon``."""
    return get_settings().default_follow_lexicon
