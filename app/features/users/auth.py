"""
Identity provider access (Appwrite) and session token handling.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import jwt
from appwrite.client import Client
from appwrite.exception import AppwriteException
from appwrite.id import ID
from appwrite.services.account import Account
from appwrite.services.databases import Databases
from appwrite.services.users import Users
from fastapi import HTTPException, status
from starlette.concurrency import run_in_threadpool

from app.core import config
from app.features.users.exceptions import IdentityProviderUnavailable, InvalidCredential
from app.utils import get_logger


log = get_logger(__name__)


class AppwriteClient:
    """Singleton Appwrite client for server-side operations."""

    _instance: Optional[Client] = None

    @classmethod
    def get_client(cls) -> Client:
        """Get or create Appwrite client instance."""
        if cls._instance is None:
            cls._instance = Client()
            cls._instance.set_endpoint(config.APPWRITE_ENDPOINT)
            cls._instance.set_project(config.APPWRITE_PROJECT_ID)
            cls._instance.set_key(config.APPWRITE_API_KEY)
        return cls._instance

    @classmethod
    def databases(cls) -> Databases:
        return Databases(cls.get_client())


# ============================================================================
# Identity provider
# ============================================================================

@dataclass(frozen=True)
class Credential:
    """A session established with the identity provider."""
    user_id: str
    session_id: str
    email: str


class IdentityProvider(ABC):
    """Authenticates email/password pairs and manages accounts."""

    @abstractmethod
    async def sign_in(self, email: str, password: str) -> Credential:
        """
        Raises:
            InvalidCredential: If the pair is rejected
            IdentityProviderUnavailable: On any other provider failure
        """

    @abstractmethod
    async def sign_out(self, credential: Credential) -> None:
        ...

    @abstractmethod
    async def create_account(self, email: str, password: str, name: str) -> str:
        """Create an account and return its user id."""

    @abstractmethod
    async def update_password(self, user_id: str, password: str) -> None:
        ...


class AppwriteIdentityProvider(IdentityProvider):
    """Appwrite accounts, driven with the server API key."""

    def __init__(self, client: Client):
        self.account = Account(client)
        self.users = Users(client)

    async def sign_in(self, email: str, password: str) -> Credential:
        try:
            session = await run_in_threadpool(
                self.account.create_email_password_session, email=email, password=password
            )
        except AppwriteException as e:
            if e.code in (400, 401):
                raise InvalidCredential()
            log.error("Appwrite sign-in failed for %s: %s", email, e.message)
            raise IdentityProviderUnavailable()
        return Credential(user_id=session["userId"], session_id=session["$id"], email=email)

    async def sign_out(self, credential: Credential) -> None:
        try:
            await run_in_threadpool(
                self.users.delete_session, user_id=credential.user_id, session_id=credential.session_id
            )
        except AppwriteException as e:
            # Already gone on the provider side
            if e.code == 404:
                return
            raise IdentityProviderUnavailable(f"Failed to end session: {e.message}")

    async def create_account(self, email: str, password: str, name: str) -> str:
        try:
            user = await run_in_threadpool(
                self.users.create, user_id=ID.unique(), email=email, password=password, name=name
            )
        except AppwriteException as e:
            raise IdentityProviderUnavailable(f"Failed to create user: {e.message}")
        return user["$id"]

    async def update_password(self, user_id: str, password: str) -> None:
        try:
            await run_in_threadpool(self.users.update_password, user_id=user_id, password=password)
        except AppwriteException as e:
            raise IdentityProviderUnavailable(f"Failed to reset password: {e.message}")


# ============================================================================
# Session tokens
# ============================================================================

def create_session_token(session_id: str, user_id: str) -> str:
    """Bearer token naming a live session; validity is governed by the session itself."""
    return jwt.encode(
        {"sid": session_id, "sub": user_id},
        config.SESSION_TOKEN_SECRET,
        algorithm=config.SESSION_TOKEN_ALGORITHM,
    )


def verify_session_token(token: str) -> dict:
    """
    Verify a session token and return its payload.

    Raises:
        HTTPException: If the token is invalid
    """
    try:
        return jwt.decode(
            token,
            config.SESSION_TOKEN_SECRET,
            algorithms=[config.SESSION_TOKEN_ALGORITHM],
        )
    except jwt.InvalidTokenError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )
