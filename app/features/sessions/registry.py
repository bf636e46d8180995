"""
Live session registry.

Maps opaque session ids (handed to clients inside the bearer token) to the
AuthGateway that owns the session. Entries drop out when the gateway logs
out, whether by request, inactivity or revocation.
"""
from typing import TYPE_CHECKING, Dict, List, Optional

import ulid

from app.utils import get_logger

if TYPE_CHECKING:
    from app.features.users.gateway import AuthGateway, LogoutReason
    from app.features.users.models import UserProfile


log = get_logger(__name__)


class SessionRegistry:
    def __init__(self):
        self._sessions: Dict[str, "AuthGateway"] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def register(self, gateway: "AuthGateway") -> str:
        """Track an authenticated gateway and return its session id."""
        sid = ulid.new().str

        def forget(_gateway: "AuthGateway", reason: "LogoutReason") -> None:
            self._sessions.pop(sid, None)
            log.debug("Session %s ended (%s)", sid, reason.value)

        gateway.on_logout = forget
        gateway.session_id = sid
        self._sessions[sid] = gateway
        return sid

    def get(self, sid: str) -> Optional["AuthGateway"]:
        gateway = self._sessions.get(sid)
        if gateway is not None and not gateway.is_authenticated():
            self._sessions.pop(sid, None)
            return None
        return gateway

    def remove(self, sid: str) -> Optional["AuthGateway"]:
        return self._sessions.pop(sid, None)

    def sessions_for(self, uid: str) -> List["AuthGateway"]:
        return [
            gateway for gateway in self._sessions.values()
            if gateway.user is not None and gateway.user.uid == uid
        ]

    async def revoke_user(self, uid: str) -> int:
        """Log out every live session of a user. Returns how many ended."""
        from app.features.users.gateway import LogoutReason

        gateways = self.sessions_for(uid)
        for gateway in gateways:
            await gateway.logout(LogoutReason.REVOKED)
        if gateways:
            log.info("Revoked %d session(s) for user %s", len(gateways), uid)
        return len(gateways)

    def refresh_user(self, profile: "UserProfile") -> int:
        """Push a changed profile into every live session of that user."""
        gateways = self.sessions_for(profile.uid)
        for gateway in gateways:
            gateway.apply_profile(profile)
        return len(gateways)

    async def close(self) -> None:
        """End every session (application shutdown)."""
        from app.features.users.gateway import LogoutReason

        for gateway in list(self._sessions.values()):
            await gateway.logout(LogoutReason.REVOKED)
        self._sessions.clear()

    def apply_role_settings(self, settings) -> None:
        """Push changed role-wide overrides into every live session."""
        for gateway in self._sessions.values():
            gateway.role_settings = settings
