"""
PromptLibrary - a named, searchable catalogue of prompt templates.

Entries carry a description, category and tags, and the whole library
round-trips through JSON. create_default() returns a starter set of
common prompts.
"""
import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Iterable, Iterator, Optional

from .errors import InvalidArgumentError, MalformedDataError
from .serialization import (
    PathLike,
    dump_json,
    load_json_object,
    read_text_file,
    require_string_map,
    write_text_file,
)
from .template import PromptTemplate


LIBRARY_FORMAT_VERSION = 1

# Upper bound on entries accepted from a single JSON document
MAX_DESERIALIZED_ENTRIES = 10_000

_NAME_PATTERN = re.compile(r"^[\w\-.]+$")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _validate_name(name: Any) -> str:
    if not isinstance(name, str) or not name.strip():
        raise InvalidArgumentError("Entry name cannot be null or empty.")
    name = name.strip()
    if not _NAME_PATTERN.match(name):
        raise InvalidArgumentError(
            f"Entry name '{name}' contains invalid characters. "
            "Use only letters, digits, hyphens, underscores, and dots."
        )
    return name


def _normalize_tags(tags: Optional[Iterable[str]]) -> list[str]:
    # Deduplicated ignoring case; first spelling wins
    seen: dict[str, str] = {}
    for tag in tags or ():
        tag = tag.strip()
        if tag:
            seen.setdefault(tag.casefold(), tag)
    return sorted(seen.values(), key=str.casefold)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class PromptEntry:
    """A template stored in a PromptLibrary.

    Attributes:
        name: Unique (case-insensitive) name; letters, digits, '-', '_', '.'.
        template: The prompt template.
        description: Optional human-readable description.
        category: Optional grouping such as "coding" or "writing".
        tags: Tags, stored trimmed, deduplicated ignoring case and sorted.
        created_at: Creation time (UTC).
        updated_at: Last modification time (UTC).
    """
    name: str
    template: PromptTemplate
    description: Optional[str] = None
    category: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        self.name = _validate_name(self.name)
        if not isinstance(self.template, PromptTemplate):
            raise InvalidArgumentError("Entry template must be a PromptTemplate")
        for attr in ("description", "category"):
            value = getattr(self, attr)
            if value is not None and not isinstance(value, str):
                raise InvalidArgumentError(f"Entry {attr} must be a string")
        if isinstance(self.tags, str):
            raise InvalidArgumentError("Entry tags must be a collection of strings, not a string")
        if self.category is not None:
            self.category = self.category.strip()
        self.tags = _normalize_tags(self.tags)

    @property
    def tag_list(self) -> list[str]:
        """A copy of the tags, sorted case-insensitively."""
        return list(self.tags)

    def set_tags(self, tags: Iterable[str]) -> None:
        self.tags = _normalize_tags(tags)
        self.touch()

    def add_tag(self, tag: str) -> None:
        """Add a tag.

        Raises:
            InvalidArgumentError: If the tag is blank.
        """
        if not isinstance(tag, str) or not tag.strip():
            raise InvalidArgumentError("Tag cannot be null or empty.")
        self.tags = _normalize_tags([*self.tags, tag])
        self.touch()

    def remove_tag(self, tag: str) -> bool:
        """Remove a tag, ignoring case.

        Returns:
            True if the tag was present.
        """
        key = tag.strip().casefold()
        kept = [t for t in self.tags if t.casefold() != key]
        if len(kept) == len(self.tags):
            return False
        self.tags = kept
        self.touch()
        return True

    def has_tag(self, tag: str) -> bool:
        key = tag.strip().casefold()
        return any(t.casefold() == key for t in self.tags)

    def touch(self) -> None:
        self.updated_at = _utcnow()

    def matches(self, query: str) -> bool:
        """Case-insensitive substring match over all text fields."""
        q = query.casefold()
        fields_to_search = [
            self.name,
            self.description or "",
            self.category or "",
            self.template.template,
            *self.tags,
        ]
        return any(q in text.casefold() for text in fields_to_search)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "template": self.template.template,
        }
        if self.template.defaults:
            data["defaults"] = self.template.defaults
        if self.description is not None:
            data["description"] = self.description
        if self.category is not None:
            data["category"] = self.category
        if self.tags:
            data["tags"] = list(self.tags)
        data["createdAt"] = self.created_at.isoformat()
        data["updatedAt"] = self.updated_at.isoformat()
        return data


class PromptLibrary:
    """
    A collection of named prompt templates with search and persistence.

    Names are matched case-insensitively. Listings are sorted by name.

    Example:
        library = PromptLibrary.create_default()
        entry = library.get("summarize")
        prompt = entry.template.render({"text": article})
    """

    def __init__(self) -> None:
        self._entries: dict[str, PromptEntry] = {}

    @staticmethod
    def _key(name: str) -> str:
        return name.strip().casefold()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self._key(name) in self._entries

    def __iter__(self) -> Iterator[PromptEntry]:
        return iter(self.entries)

    @property
    def names(self) -> list[str]:
        return [entry.name for entry in self.entries]

    @property
    def entries(self) -> list[PromptEntry]:
        return sorted(self._entries.values(), key=lambda e: e.name.casefold())

    def add(
        self,
        name: str,
        template: PromptTemplate,
        description: Optional[str] = None,
        category: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
    ) -> PromptEntry:
        """Add a new entry.

        Raises:
            InvalidArgumentError: If the name is invalid or already used.
        """
        entry = PromptEntry(name, template, description, category, tags or ())
        key = self._key(entry.name)
        if key in self._entries:
            raise InvalidArgumentError(
                f"An entry named '{entry.name}' already exists. "
                "Use update() to modify it or remove() first."
            )
        self._entries[key] = entry
        return entry

    def set(
        self,
        name: str,
        template: PromptTemplate,
        description: Optional[str] = None,
        category: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
    ) -> PromptEntry:
        """Add or replace an entry."""
        entry = PromptEntry(name, template, description, category, tags or ())
        self._entries[self._key(entry.name)] = entry
        return entry

    def update(
        self,
        name: str,
        template: Optional[PromptTemplate] = None,
        description: Optional[str] = None,
        category: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
    ) -> PromptEntry:
        """Update selected fields of an existing entry.

        Raises:
            KeyError: If no entry has this name.
        """
        entry = self.get(name)
        if template is not None:
            entry.template = template
        if description is not None:
            entry.description = description
        if category is not None:
            entry.category = category.strip()
        if tags is not None:
            entry.set_tags(tags)
        entry.touch()
        return entry

    def get(self, name: str) -> PromptEntry:
        """Return the entry with this name.

        Raises:
            KeyError: If no entry has this name.
        """
        try:
            return self._entries[self._key(name)]
        except KeyError:
            raise KeyError(f"No entry named '{name}' found in the library.") from None

    def find(self, name: str) -> Optional[PromptEntry]:
        return self._entries.get(self._key(name))

    def remove(self, name: str) -> bool:
        return self._entries.pop(self._key(name), None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def find_by_category(self, category: str) -> list[PromptEntry]:
        if not category or not category.strip():
            return []
        wanted = category.strip().casefold()
        return [e for e in self.entries if (e.category or "").casefold() == wanted]

    def find_by_tag(self, tag: str) -> list[PromptEntry]:
        if not tag or not tag.strip():
            return []
        return [e for e in self.entries if e.has_tag(tag)]

    def search(self, query: str) -> list[PromptEntry]:
        """Search names, descriptions, categories, bodies and tags.

        A blank query returns every entry.
        """
        if not query or not query.strip():
            return self.entries
        q = query.strip()
        return [e for e in self.entries if e.matches(q)]

    def categories(self) -> list[str]:
        seen: dict[str, str] = {}
        for entry in self._entries.values():
            if entry.category:
                seen.setdefault(entry.category.casefold(), entry.category)
        return sorted(seen.values(), key=str.casefold)

    def tags(self) -> list[str]:
        seen: dict[str, str] = {}
        for entry in self._entries.values():
            for tag in entry.tag_list:
                seen.setdefault(tag.casefold(), tag)
        return sorted(seen.values(), key=str.casefold)

    def merge(self, other: "PromptLibrary", overwrite: bool = False) -> int:
        """Copy entries from another library.

        Entries are copied, so later edits on either side stay separate.

        Args:
            other: Library to import from.
            overwrite: Replace entries whose names already exist.

        Returns:
            Number of entries added or replaced.
        """
        if not isinstance(other, PromptLibrary):
            raise InvalidArgumentError("Can only merge another PromptLibrary")

        count = 0
        for entry in other.entries:
            key = self._key(entry.name)
            if key in self._entries and not overwrite:
                continue
            self._entries[key] = replace(
                entry,
                template=PromptTemplate(entry.template.template, entry.template.defaults),
                tags=entry.tag_list,
            )
            count += 1
        return count

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": LIBRARY_FORMAT_VERSION,
            "entries": [entry.to_dict() for entry in self.entries],
        }

    @classmethod
    def from_dict(cls, data: Any) -> "PromptLibrary":
        """Restore a library from its persisted form.

        Entries without a name or template body are skipped.

        Raises:
            MalformedDataError: If the entries array is missing, too large,
                or an entry has a malformed name, defaults, tags,
                description or category.
        """
        if not isinstance(data, dict):
            raise MalformedDataError("Invalid library data: expected an object")

        entries = data.get("entries")
        if not isinstance(entries, list):
            raise MalformedDataError("Invalid library JSON: missing entries array.")
        if len(entries) > MAX_DESERIALIZED_ENTRIES:
            raise MalformedDataError(
                f"Library JSON contains {len(entries)} entries, "
                f"exceeding the maximum of {MAX_DESERIALIZED_ENTRIES}."
            )

        library = cls()
        for item in entries:
            if not isinstance(item, dict):
                continue
            name = item.get("name")
            body = item.get("template")
            if not isinstance(name, str) or not name.strip():
                continue
            if not isinstance(body, str) or not body.strip():
                continue

            tags = item.get("tags") or []
            if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
                raise MalformedDataError(f"Entry '{name}': 'tags' must be a list of strings")
            for key in ("description", "category"):
                if item.get(key) is not None and not isinstance(item[key], str):
                    raise MalformedDataError(f"Entry '{name}': '{key}' must be a string")

            try:
                entry = PromptEntry(
                    name,
                    PromptTemplate(body, require_string_map(item.get("defaults"), "defaults")),
                    description=item.get("description"),
                    category=item.get("category"),
                    tags=tags,
                )
            except InvalidArgumentError as e:
                raise MalformedDataError(f"Invalid library entry: {e}") from e

            created_at = _parse_timestamp(item.get("createdAt"))
            updated_at = _parse_timestamp(item.get("updatedAt"))
            if created_at is not None:
                entry.created_at = created_at
            if updated_at is not None:
                entry.updated_at = updated_at

            library._entries[cls._key(entry.name)] = entry

        return library

    def to_json(self, indent: Optional[int] = 2) -> str:
        return dump_json(self.to_dict(), indent=indent)

    @classmethod
    def from_json(cls, text: str) -> "PromptLibrary":
        return cls.from_dict(load_json_object(text, "library"))

    def save(self, path: PathLike, indent: Optional[int] = 2) -> None:
        write_text_file(path, self.to_json(indent=indent))

    @classmethod
    def load(cls, path: PathLike) -> "PromptLibrary":
        return cls.from_json(read_text_file(path))

    @classmethod
    def create_default(cls) -> "PromptLibrary":
        """Return a library pre-populated with common prompts."""
        lib = cls()

        lib.add(
            "code-review",
            PromptTemplate(
                "Review this {{language}} code for bugs, performance issues, and improvements:"
                "\n\n```{{language}}\n{{code}}\n```",
                {"language": "code"},
            ),
            description="Reviews code and suggests improvements",
            category="coding",
            tags=["review", "quality", "best-practices"],
        )
        lib.add(
            "explain-code",
            PromptTemplate(
                "Explain this {{language}} code step by step. Use simple language:"
                "\n\n```{{language}}\n{{code}}\n```",
                {"language": "code"},
            ),
            description="Explains code in simple terms",
            category="coding",
            tags=["explain", "learning"],
        )
        lib.add(
            "summarize",
            PromptTemplate(
                "Summarize the following text in {{style}} style. "
                "Keep it under {{maxWords}} words:\n\n{{text}}",
                {"style": "concise", "maxWords": "100"},
            ),
            description="Summarizes text with configurable style and length",
            category="writing",
            tags=["summarize", "condense"],
        )
        lib.add(
            "translate",
            PromptTemplate(
                "Translate the following text from {{source}} to {{target}}. "
                "Preserve the original tone and meaning:\n\n{{text}}",
                {"source": "English"},
            ),
            description="Translates text between languages",
            category="writing",
            tags=["translate", "language", "i18n"],
        )
        lib.add(
            "extract-json",
            PromptTemplate(
                "Extract the following fields from the text and return valid JSON:"
                "\n\nFields: {{fields}}\n\nText:\n{{text}}"
            ),
            description="Extracts structured data from text as JSON",
            category="data",
            tags=["extract", "json", "structured"],
        )
        lib.add(
            "rewrite",
            PromptTemplate(
                "Rewrite the following text in a {{tone}} tone for a {{audience}} audience:\n\n{{text}}",
                {"tone": "professional", "audience": "general"},
            ),
            description="Rewrites text with configurable tone and audience",
            category="writing",
            tags=["rewrite", "tone", "style"],
        )
        lib.add(
            "debug-error",
            PromptTemplate(
                "I got this error in my {{language}} code:\n\nError:\n```\n{{error}}\n```"
                "\n\nCode:\n```{{language}}\n{{code}}\n```"
                "\n\nExplain what caused the error and how to fix it."
            ),
            description="Diagnoses and fixes code errors",
            category="coding",
            tags=["debug", "error", "fix"],
        )
        lib.add(
            "generate-tests",
            PromptTemplate(
                "Generate unit tests for this {{language}} code using {{framework}}:"
                "\n\n```{{language}}\n{{code}}\n```\n\nCover edge cases and common scenarios.",
                {"framework": "the standard testing framework"},
            ),
            description="Generates unit tests for code",
            category="coding",
            tags=["testing", "unit-tests", "quality"],
        )

        return lib
