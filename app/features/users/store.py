"""
User profile store.

Profiles are documents in an Appwrite collection keyed by the identity
provider's user id. A missing document reads as None; any other store
failure raises ProfileStoreUnavailable.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from appwrite.exception import AppwriteException
from appwrite.query import Query
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from app.features.users.exceptions import ProfileStoreUnavailable
from app.features.users.models import UserProfile
from app.utils import get_logger


log = get_logger(__name__)


def _to_profile(document) -> UserProfile:
    """A stored document that does not match the profile schema reads as a store failure."""
    try:
        return UserProfile.from_document(document)
    except (ValidationError, TypeError) as e:
        log.error("Malformed profile document %s: %s", document.get("$id"), e)
        raise ProfileStoreUnavailable()


class ProfileStore(ABC):
    @abstractmethod
    async def get(self, uid: str) -> Optional[UserProfile]:
        ...

    @abstractmethod
    async def find_by_mobile(self, mobile_number: str) -> Optional[UserProfile]:
        ...

    @abstractmethod
    async def create(self, profile: UserProfile) -> UserProfile:
        """Write a new profile in a single document write. Never overwrites."""

    @abstractmethod
    async def update(self, uid: str, fields: Dict[str, Any]) -> UserProfile:
        """Apply stored-field updates (camelCase keys) and return the new profile."""

    @abstractmethod
    async def list_profiles(self, limit: int = 100) -> List[UserProfile]:
        ...


class AppwriteProfileStore(ProfileStore):
    def __init__(self, databases, database_id: str, collection_id: str):
        self.databases = databases
        self.database_id = database_id
        self.collection_id = collection_id

    async def get(self, uid: str) -> Optional[UserProfile]:
        try:
            document = await run_in_threadpool(
                self.databases.get_document, self.database_id, self.collection_id, uid
            )
        except AppwriteException as e:
            if e.code == 404:
                return None
            log.warning("Profile read failed for %s: %s", uid, e.message)
            raise ProfileStoreUnavailable()
        return _to_profile(document)

    async def find_by_mobile(self, mobile_number: str) -> Optional[UserProfile]:
        try:
            result = await run_in_threadpool(
                self.databases.list_documents,
                self.database_id,
                self.collection_id,
                [Query.equal("mobileNumber", mobile_number), Query.limit(1)],
            )
        except AppwriteException as e:
            log.warning("Profile lookup by mobile number failed: %s", e.message)
            raise ProfileStoreUnavailable()
        documents = result.get("documents", [])
        if not documents:
            return None
        return _to_profile(documents[0])

    async def create(self, profile: UserProfile) -> UserProfile:
        try:
            document = await run_in_threadpool(
                self.databases.create_document,
                self.database_id,
                self.collection_id,
                profile.uid,
                profile.to_document(),
            )
        except AppwriteException as e:
            log.error("Profile creation failed for %s: %s", profile.uid, e.message)
            raise ProfileStoreUnavailable(f"Failed to create user profile: {e.message}")
        return UserProfile.from_document(document)

    async def update(self, uid: str, fields: Dict[str, Any]) -> UserProfile:
        try:
            document = await run_in_threadpool(
                self.databases.update_document,
                self.database_id,
                self.collection_id,
                uid,
                fields,
            )
        except AppwriteException as e:
            log.error("Profile update failed for %s: %s", uid, e.message)
            raise ProfileStoreUnavailable(f"Failed to update user profile: {e.message}")
        return UserProfile.from_document(document)

    async def list_profiles(self, limit: int = 100) -> List[UserProfile]:
        try:
            result = await run_in_threadpool(
                self.databases.list_documents,
                self.database_id,
                self.collection_id,
                [Query.limit(limit)],
            )
        except AppwriteException as e:
            raise ProfileStoreUnavailable(f"Failed to fetch users: {e.message}")
        return [_to_profile(document) for document in result.get("documents", [])]
