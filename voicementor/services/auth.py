from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

import structlog

from voicementor.config import AuthConfig, StorageConfig
from voicementor.errors import AuthRequired
from voicementor.services.firebase import get_firebase_app

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Identity:
    uid: str
    email: str = ""
    display_name: str = ""
    email_verified: bool = False

    @property
    def short_name(self) -> str:
        if self.display_name:
            return self.display_name.split(" ")[0]
        return self.email.split("@")[0]


class AuthProvider(ABC):
    @abstractmethod
    def current_user(self) -> Optional[Identity]:
        pass


class StaticAuth(AuthProvider):
    """Identity fixed by configuration (CLI use)."""

    def __init__(self, identity: Optional[Identity] = None) -> None:
        self._identity = identity

    @classmethod
    def from_config(cls, config: AuthConfig) -> "StaticAuth":
        if not config.uid:
            return cls(None)
        return cls(
            Identity(
                uid=config.uid,
                email=config.email,
                display_name=config.display_name,
                email_verified=bool(config.email_verified),
            )
        )

    def current_user(self) -> Optional[Identity]:
        return self._identity

    def sign_out(self) -> None:
        self._identity = None


class FirebaseTokenAuth(AuthProvider):
    """Identity taken from a verified Firebase ID token."""

    def __init__(self, app: Any = None) -> None:
        self._app = app
        self._identity: Optional[Identity] = None

    def sign_in_with_token(self, id_token: str) -> Identity:
        from firebase_admin import auth as firebase_auth  # type: ignore
        from firebase_admin.exceptions import FirebaseError  # type: ignore

        try:
            decoded = firebase_auth.verify_id_token(id_token, app=self._app)
        except (ValueError, FirebaseError) as exc:
            self._identity = None
            raise AuthRequired(f"Invalid Firebase ID token: {exc}") from exc

        self._identity = Identity(
            uid=str(decoded["uid"]),
            email=str(decoded.get("email", "")),
            display_name=str(decoded.get("name", "")),
            email_verified=bool(decoded.get("email_verified", False)),
        )
        logger.info("Signed in", uid=self._identity.uid, email_verified=self._identity.email_verified)
        return self._identity

    def current_user(self) -> Optional[Identity]:
        return self._identity

    def sign_out(self) -> None:
        self._identity = None


def verified_user(auth: AuthProvider) -> Identity:
    user = auth.current_user()
    if user is None:
        raise AuthRequired("No authenticated user")
    if not user.email_verified:
        raise AuthRequired(f"E-mail address of {user.email or user.uid} is not verified")
    return user


def build_auth(config: AuthConfig, storage: StorageConfig) -> AuthProvider:
    if not config.id_token:
        return StaticAuth.from_config(config)
    auth = FirebaseTokenAuth(get_firebase_app(storage.credentials_path, storage.project_id))
    auth.sign_in_with_token(config.id_token)
    return auth
