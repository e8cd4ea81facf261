"""Name and type filters applied to both sides of a comparison."""
from __future__ import annotations

import re
from dataclasses import dataclass
from re import Pattern
from typing import Optional, Union

from .entries import DirectoryEntry, EntryType

FILTER_TYPES = tuple(option.value for option in EntryType)

NamePattern = Union[str, Pattern[str], None]


@dataclass(frozen=True)
class EntryFilter:
    """Limits watching to entries with a matching name and type."""

    name: Optional[Pattern[str]] = None
    type: Optional[EntryType] = None

    @classmethod
    def build(cls, name: NamePattern = None, type: Union[str, EntryType, None] = None) -> "EntryFilter":
        return cls(name=compile_name_pattern(name), type=_coerce_type(type))

    def matches(self, entry: DirectoryEntry) -> bool:
        if self.type is not None and entry.type is not self.type:
            return False
        return self.matches_name(entry.name)

    def matches_name(self, name: str) -> bool:
        if self.name is None:
            return True
        return self.name.search(name) is not None


def compile_name_pattern(value: NamePattern) -> Optional[Pattern[str]]:
    """Compile a glob string into a regex; compiled patterns pass through.

    Globs match the whole name and only expand ``*`` and ``?``. A compiled
    pattern is searched anywhere in the name, so anchor it if needed.
    """

    if value is None or value == "":
        return None
    if isinstance(value, str):
        return re.compile(glob_to_regex(value))
    if isinstance(value, re.Pattern):
        return value
    raise ValueError(f"name filter must be a glob string or a compiled regex, not {type(value).__name__}")


def glob_to_regex(glob: str) -> str:
    escaped = re.escape(glob).replace(r"\*", ".*").replace(r"\?", ".")
    return rf"(?s)\A{escaped}\Z"


def _coerce_type(value: Union[str, EntryType, None]) -> Optional[EntryType]:
    if value is None or isinstance(value, EntryType):
        return value
    try:
        return EntryType(value)
    except ValueError as exc:
        allowed = ", ".join(FILTER_TYPES)
        raise ValueError(f"invalid type filter {value!r}; must be one of: {allowed}") from exc
