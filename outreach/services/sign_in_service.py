"""
Sign-in flow: write the user's identity into their document, then run the
one-time local migration. Store failures are logged and never fail sign-in.
"""

from dataclasses import dataclass, field

from outreach.auth.token_provider import AuthUser
from outreach.db.gateway import DocumentStoreError, UserDocumentGateway
from outreach.infrastructure.observability.logging import get_logger
from outreach.services.local_fallback import (
    IS_DEMO_MODE_KEY,
    IS_NEW_SIGNUP_KEY,
    LocalFallbackStore,
)
from outreach.services.migration_service import MigrationReport, MigrationService
from outreach.services.user_document_service import UserDocumentService

logger = get_logger(__name__)


@dataclass(slots=True)
class SignInResult:
    user: AuthUser
    profile_saved: bool = False
    migration: MigrationReport = field(default_factory=MigrationReport)


class SignInService:
    def __init__(
        self,
        gateway: UserDocumentGateway,
        local: LocalFallbackStore | None = None,
        documents: UserDocumentService | None = None,
        migration: MigrationService | None = None,
    ):
        self.local = local or LocalFallbackStore()
        self.documents = documents or UserDocumentService(gateway)
        self.migration = migration or MigrationService(gateway, self.local, self.documents)

    async def complete_sign_in(self, user: AuthUser, new_signup: bool = False) -> SignInResult:
        result = SignInResult(user=user)

        try:
            await self.documents.create_or_update_user_profile(
                user.uid,
                email=user.email,
                display_name=user.display_name,
                photo_url=user.photo_url,
                email_verified=user.email_verified,
            )
            result.profile_saved = True
        except DocumentStoreError as e:
            logger.error("Failed to save user profile on sign-in", user_id=user.uid, error=e.message)
            return result

        result.migration = await self.migration.migrate_local_to_remote(user.uid)

        # A real account replaces any demo session
        await self.local.set_flag(IS_DEMO_MODE_KEY, False)
        await self.local.set_demo_user(None)
        if new_signup:
            await self.local.set_flag(IS_NEW_SIGNUP_KEY, True)

        logger.info(
            "Sign-in completed",
            user_id=user.uid,
            migrated=result.migration.migrated_anything,
            new_signup=new_signup,
        )
        return result
