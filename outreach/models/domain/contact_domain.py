# outreach/models/domain/contact_domain.py
"""
Contact Domain Models
Contacts arrive in several shapes (`value` or `email`, `company` or
`organization`, ...). They are validated into `Contact` at the boundary and
persisted in the shape they arrived in; identity is always the normalized
email key.
"""

from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, ValidationError

from outreach.errors import ErrorKind

ContactListName = Literal["shortlist", "sent", "trash"]
CONTACT_LISTS: tuple[ContactListName, ...] = ("shortlist", "sent", "trash")


def normalize_email_key(value: Any) -> str:
    """Lowercase, trimmed email key; empty string when there is nothing usable."""
    if value is None:
        return ""
    return str(value).strip().lower()


def contact_key(contact: "Contact | dict | None") -> str:
    """Key of a stored contact dict or a Contact; first non-empty of value, email."""
    if contact is None:
        return ""
    if isinstance(contact, Contact):
        return contact.key
    return normalize_email_key(contact.get("value")) or normalize_email_key(contact.get("email"))


class Contact(BaseModel):
    """Contact record from search, enrichment or the user's lists."""

    model_config = ConfigDict(extra="allow")

    value: str | None = None
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    name: str | None = None
    company: str | None = None
    organization: str | None = None
    position: str | None = None
    department: str | None = None
    industry: str | None = None
    linkedin: str | None = None
    ai_summary: str | None = None
    summary: str | None = None
    template: str | None = None

    @classmethod
    def coerce(cls, contact: "Contact | dict") -> "Contact":
        if isinstance(contact, Contact):
            return contact
        return cls.model_validate(contact)

    @classmethod
    def lenient(cls, contact: "Contact | dict | None") -> "Contact":
        """Like `coerce`, but fields that fail validation are dropped instead of raising."""
        if isinstance(contact, Contact):
            return contact
        if not isinstance(contact, dict):
            return cls()
        try:
            return cls.model_validate(contact)
        except ValidationError as e:
            invalid = {error["loc"][0] for error in e.errors() if error["loc"]}
            return cls.model_validate({k: v for k, v in contact.items() if k not in invalid})

    @property
    def key(self) -> str:
        return normalize_email_key(self.value) or normalize_email_key(self.email)

    @property
    def is_identifiable(self) -> bool:
        return bool(self.key)

    @property
    def company_name(self) -> str | None:
        return self.company or self.organization

    @property
    def sector(self) -> str | None:
        return self.department or self.industry

    @property
    def blurb(self) -> str | None:
        return self.ai_summary or self.summary

    @property
    def display_name(self) -> str:
        full = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return full or self.name or self.value or self.email or "this contact"

    def to_document(self) -> dict[str, Any]:
        """Dict stored in the user document; only the fields the caller supplied."""
        return self.model_dump(exclude_unset=True)


@dataclass(slots=True)
class UserContacts:
    """Three disjoint ordered sequences of stored contact dicts."""

    shortlist: list[dict] = field(default_factory=list)
    sent: list[dict] = field(default_factory=list)
    trash: list[dict] = field(default_factory=list)

    @classmethod
    def from_document(cls, data: dict | None) -> "UserContacts":
        """Build from a document's `contacts` field, dropping members without a key."""
        data = data or {}
        lists = {}
        for name in CONTACT_LISTS:
            entries = data.get(name) or []
            lists[name] = [dict(c) for c in entries if isinstance(c, dict) and contact_key(c)]
        return cls(**lists)

    def to_document(self) -> dict[str, list[dict]]:
        return {name: [dict(c) for c in self.entries(name)] for name in CONTACT_LISTS}

    def entries(self, name: ContactListName) -> list[dict]:
        if name not in CONTACT_LISTS:
            raise ValueError(f"Unknown contact list '{name}'")
        return getattr(self, name)

    def keys(self, name: ContactListName) -> list[str]:
        return [contact_key(c) for c in self.entries(name)]

    def index_of(self, name: ContactListName, key: str) -> int:
        for index, contact in enumerate(self.entries(name)):
            if contact_key(contact) == key:
                return index
        return -1

    def contains(self, name: ContactListName, key: str) -> bool:
        return self.index_of(name, key) >= 0

    def locate(self, key: str) -> tuple[ContactListName, dict] | None:
        """First list holding `key` and the stored entry."""
        for name in CONTACT_LISTS:
            index = self.index_of(name, key)
            if index >= 0:
                return name, self.entries(name)[index]
        return None

    def remove(self, name: ContactListName, key: str) -> dict | None:
        """Remove every entry with `key` from a list; returns the first removed."""
        entries = self.entries(name)
        removed = [c for c in entries if contact_key(c) == key]
        if not removed:
            return None
        entries[:] = [c for c in entries if contact_key(c) != key]
        return removed[0]

    def append(self, name: ContactListName, contact: dict) -> bool:
        """Append unless the key is already present in that list."""
        if self.contains(name, contact_key(contact)):
            return False
        self.entries(name).append(dict(contact))
        return True

    def is_disjoint(self) -> bool:
        seen: set[str] = set()
        for name in CONTACT_LISTS:
            for key in set(self.keys(name)):
                if key in seen:
                    return False
                seen.add(key)
        return True

    def counts(self) -> dict[str, int]:
        return {name: len(self.entries(name)) for name in CONTACT_LISTS}


@dataclass(frozen=True, slots=True)
class ReversalEntry:
    key: str
    prior_list: ContactListName | None  # None: the key was in no list before
    contact: dict


@dataclass(frozen=True, slots=True)
class Reversal:
    """Prior membership of every key a destructive operation touched."""

    operation: str
    entries: tuple[ReversalEntry, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.entries

    @property
    def keys(self) -> list[str]:
        return [entry.key for entry in self.entries]


@dataclass(slots=True)
class MutationResult:
    ok: bool
    changed: bool = False
    reversal: Reversal | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None

    def __bool__(self) -> bool:
        return self.ok
