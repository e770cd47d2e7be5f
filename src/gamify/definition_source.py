"""Resolution of static (config) and dynamic (database) definitions.

Badges and quests are declared in code and may be overridden or extended by
rows in the database. Resolution is keyed by slug and dynamic always wins.
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import StrEnum
from typing import Protocol, TypeVar


class DefinitionSource(StrEnum):
    STATIC = "static"
    DYNAMIC = "dynamic"


class _Sluggable(Protocol):
    slug: str
    source: DefinitionSource


T = TypeVar("T", bound=_Sluggable)


def merge_definitions(static: Iterable[T], dynamic: Iterable[T]) -> list[T]:
    """Slug-keyed merge. Order: static declaration order, then new dynamic slugs."""
    merged: dict[str, T] = {}
    for definition in static:
        merged[definition.slug] = definition
    for definition in dynamic:
        merged[definition.slug] = definition
    return list(merged.values())
