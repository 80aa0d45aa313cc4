"""
User document domain models.

All persisted outreach state lives in one per-user document. The models here
describe its nested records; `build_user_skeleton` produces the shape written
on first sign-in and whenever a write finds no document.
"""

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from outreach.models.domain.contact_domain import Contact

# Document field names
CONTACTS_FIELD = "contacts"
TEMPLATES_FIELD = "templates"
PROFILE_FIELD = "profile"
EMAIL_DRAFTS_FIELD = "emailDrafts"
SEARCH_HISTORY_FIELD = "searchHistory"
BEHAVIOR_FIELD = "behavior"
UPDATED_AT_FIELD = "updatedAt"
CREATED_AT_FIELD = "createdAt"


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


class _DocumentModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class EmailDraft(_DocumentModel):
    subject: str = ""
    body: str = ""
    updated_at: str = Field(default_factory=utc_now_iso, alias="updatedAt")


class SearchHistoryEntry(_DocumentModel):
    id: str
    query: str
    contacts: list[Contact] = Field(default_factory=list)
    result_count: int = Field(default=0, alias="resultCount")
    timestamp: str
    created_at: str = Field(alias="createdAt")

    def to_document(self) -> dict[str, Any]:
        data = self.model_dump(by_alias=True, exclude={"contacts"})
        data["contacts"] = [contact.to_document() for contact in self.contacts]
        return data


class EmailTemplate(_DocumentModel):
    id: int | str
    name: str
    subject: str = ""
    content: str = ""


class UserProfileData(_DocumentModel):
    name: str = ""
    email: str = ""
    school: str = ""
    industries: list[str] = Field(default_factory=list)
    bio: str = ""
    resume_name: str = Field(default="", alias="resumeName")
    resume_data: str = Field(default="", alias="resumeData")


class UserBehavior(_DocumentModel):
    search_history: list[dict[str, Any]] = Field(default_factory=list, alias="searchHistory")
    accepted_contacts: list[dict[str, Any]] = Field(default_factory=list, alias="acceptedContacts")
    rejected_contacts: list[dict[str, Any]] = Field(default_factory=list, alias="rejectedContacts")
    last_activity: str | None = Field(default=None, alias="lastActivity")


def empty_contacts() -> dict[str, list]:
    return {"shortlist": [], "sent": [], "trash": []}


def build_user_skeleton(
    email: str = "",
    display_name: str = "",
    photo_url: str = "",
    email_verified: bool = False,
) -> dict[str, Any]:
    """Skeleton written when a user document is first created."""
    now = utc_now_iso()
    return {
        "email": email,
        "displayName": display_name,
        "photoURL": photo_url,
        "emailVerified": email_verified,
        CREATED_AT_FIELD: now,
        UPDATED_AT_FIELD: now,
        CONTACTS_FIELD: empty_contacts(),
        TEMPLATES_FIELD: [],
        PROFILE_FIELD: UserProfileData(email=email).to_document(),
        EMAIL_DRAFTS_FIELD: {},
        SEARCH_HISTORY_FIELD: [],
        BEHAVIOR_FIELD: UserBehavior().to_document(),
    }
