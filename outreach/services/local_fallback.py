"""
Local fallback store.

Process-wide key-value copy of the outreach state, used only when no user is
signed in or a remote read has failed, and as the source of the one-time
migration. Values are JSON strings under namespaced keys.
"""

import json
from typing import Any, Protocol

from outreach.config import settings
from outreach.infrastructure.observability.logging import get_logger
from outreach.models.domain.contact_domain import UserContacts
from outreach.services.redis_client import fast_redis

logger = get_logger(__name__)

MY_CONTACTS_KEY = "myContacts"
EMAIL_TEMPLATES_KEY = "emailTemplates"
USER_PROFILE_KEY = "userProfile"
EMAIL_DRAFTS_KEY = "emailDrafts"
IS_DEMO_MODE_KEY = "isDemoMode"
DEMO_USER_KEY = "demoUser"
IS_NEW_ACCOUNT_KEY = "isNewAccount"
IS_NEW_SIGNUP_KEY = "isNewSignup"

FLAG_KEYS = frozenset({IS_DEMO_MODE_KEY, IS_NEW_ACCOUNT_KEY, IS_NEW_SIGNUP_KEY})


class KeyValueClient(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool: ...

    async def delete(self, key: str) -> bool: ...


class LocalFallbackStore:
    def __init__(self, client: KeyValueClient | None = None, namespace: str | None = None):
        self.client = client or fast_redis
        self.namespace = namespace if namespace is not None else settings.LOCAL_FALLBACK_NAMESPACE

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}" if self.namespace else key

    async def get_json(self, key: str, default: Any = None) -> Any:
        raw = await self.client.get(self._key(key))
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except ValueError as e:
            logger.warning("Corrupt local fallback value", key=key, error=str(e))
            return default

    async def set_json(self, key: str, value: Any) -> bool:
        ok = await self.client.set_with_ttl(self._key(key), json.dumps(value))
        if not ok:
            logger.warning("Local fallback write failed", key=key)
        return ok

    async def remove(self, key: str) -> bool:
        return await self.client.delete(self._key(key))

    # Contacts

    async def get_contacts(self) -> UserContacts:
        data = await self.get_json(MY_CONTACTS_KEY)
        return UserContacts.from_document(data if isinstance(data, dict) else None)

    async def has_contacts(self) -> bool:
        return await self.get_json(MY_CONTACTS_KEY) is not None

    async def set_contacts(self, contacts: UserContacts) -> bool:
        return await self.set_json(MY_CONTACTS_KEY, contacts.to_document())

    # Templates, profile, drafts

    async def get_templates(self) -> list[dict]:
        data = await self.get_json(EMAIL_TEMPLATES_KEY, [])
        return data if isinstance(data, list) else []

    async def set_templates(self, templates: list[dict]) -> bool:
        return await self.set_json(EMAIL_TEMPLATES_KEY, templates)

    async def get_profile(self) -> dict | None:
        data = await self.get_json(USER_PROFILE_KEY)
        return data if isinstance(data, dict) else None

    async def set_profile(self, profile: dict) -> bool:
        return await self.set_json(USER_PROFILE_KEY, profile)

    async def get_drafts(self) -> dict[str, dict]:
        data = await self.get_json(EMAIL_DRAFTS_KEY, {})
        return data if isinstance(data, dict) else {}

    async def set_drafts(self, drafts: dict[str, dict]) -> bool:
        return await self.set_json(EMAIL_DRAFTS_KEY, drafts)

    # Session flags

    async def get_flag(self, name: str) -> bool:
        if name not in FLAG_KEYS:
            raise ValueError(f"Unknown flag '{name}'")
        return bool(await self.get_json(name, False))

    async def set_flag(self, name: str, value: bool) -> bool:
        if name not in FLAG_KEYS:
            raise ValueError(f"Unknown flag '{name}'")
        if not value:
            await self.remove(name)
            return True
        return await self.set_json(name, True)

    async def get_demo_user(self) -> dict | None:
        data = await self.get_json(DEMO_USER_KEY)
        return data if isinstance(data, dict) else None

    async def set_demo_user(self, user: dict | None) -> bool:
        if user is None:
            await self.remove(DEMO_USER_KEY)
            return True
        return await self.set_json(DEMO_USER_KEY, user)
