from __future__ import annotations

import datetime
import logging
import secrets
from urllib.parse import urlencode

import bcrypt
from jose import JWTError, jwt

from db import (
    AsyncAuthCodeRepository,
    AsyncEmailLogRepository,
    AsyncProfileRepository,
    AsyncRefreshTokenRepository,
    AsyncUserRepository,
)
from errors import AuthError, ValidationError
from settings_schema import SettingsSchema

logger = logging.getLogger(__name__)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


class AuthService:
    """Email/password, magic link and OAuth sign-in backed by SQLite.

    Access tokens are short lived JWTs. Refresh tokens are opaque strings that
    are rotated on every refresh. Mail is written to the email log table.
    """

    ALGORITHM = "HS256"
    MIN_PASSWORD_LENGTH = 6
    PROVIDERS = ("google",)

    def __init__(self, db_path: str = "workout.db", settings: SettingsSchema | None = None) -> None:
        self.settings = settings or SettingsSchema()
        if not self.settings.jwt_secret:
            self.settings = self.settings.model_copy(
                update={"jwt_secret": secrets.token_hex(32)}
            )
        self.users = AsyncUserRepository(db_path)
        self.codes = AsyncAuthCodeRepository(db_path)
        self.refresh_tokens = AsyncRefreshTokenRepository(db_path)
        self.email_logs = AsyncEmailLogRepository(db_path)
        self.profiles = AsyncProfileRepository(db_path)

    @staticmethod
    def _now() -> datetime.datetime:
        return datetime.datetime.now(datetime.timezone.utc)

    @staticmethod
    def public_user(user: dict) -> dict:
        return {
            "id": user["id"],
            "email": user["email"],
            "email_confirmed": user["email_confirmed"],
            "user_metadata": user.get("metadata", {}),
            "created_at": user["created_at"],
        }

    def _access_token(self, user: dict) -> tuple[str, int]:
        lifetime = datetime.timedelta(minutes=self.settings.access_token_minutes)
        claims = {
            "sub": user["id"],
            "email": user["email"],
            "type": "access",
            "exp": self._now() + lifetime,
        }
        token = jwt.encode(claims, self.settings.jwt_secret, algorithm=self.ALGORITHM)
        return token, int(lifetime.total_seconds())

    async def _issue_session(self, user: dict) -> dict:
        access_token, expires_in = self._access_token(user)
        refresh_token = secrets.token_urlsafe(32)
        await self.refresh_tokens.add(refresh_token, user["id"])
        return {
            "access_token": access_token,
            "refresh_token": refresh_token,
            "token_type": "bearer",
            "expires_in": expires_in,
            "user": self.public_user(user),
        }

    async def _issue_code(self, user_id: str, purpose: str, redirect_to: str | None = None) -> str:
        code = secrets.token_urlsafe(24)
        expires = self._now() + datetime.timedelta(minutes=self.settings.code_minutes)
        await self.codes.add(code, user_id, purpose, expires.isoformat(), redirect_to)
        return code

    async def _send_link(self, email: str, subject: str, code: str, redirect_to: str | None) -> None:
        query = {"code": code}
        if redirect_to:
            query["next"] = redirect_to
        link = f"{self.settings.site_url}/auth/callback?{urlencode(query)}"
        await self.email_logs.add(email, subject, link, True)
        logger.info("sent %s mail to %s", subject.lower(), email)

    async def _ensure_profile(self, user_id: str, name: str | None, unit_preference: str | None) -> None:
        if await self.profiles.fetch_detail(user_id) is None:
            await self.profiles.create(
                user_id,
                name=name or "New User",
                unit_preference=unit_preference or self.settings.unit_preference,
            )

    @staticmethod
    def _check_email(email: str) -> str:
        email = (email or "").strip().lower()
        if "@" not in email or email.startswith("@") or email.endswith("@"):
            raise ValidationError("A valid email is required")
        return email

    async def sign_up(
        self,
        email: str,
        password: str,
        name: str | None = None,
        unit_preference: str | None = None,
    ) -> dict:
        """Register a user; the session is ``None`` until the email is confirmed."""
        email = self._check_email(email)
        if not password or len(password) < self.MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"Password should be at least {self.MIN_PASSWORD_LENGTH} characters"
            )
        if await self.users.fetch_by_email(email) is not None:
            raise AuthError("User already registered", "user_exists")
        confirmed = not self.settings.require_email_confirmation
        user_id = await self.users.create(
            email,
            hash_password(password),
            confirmed=confirmed,
            metadata={"name": name, "unit_preference": unit_preference},
        )
        await self._ensure_profile(user_id, name, unit_preference)
        user = await self.users.fetch_detail(user_id)
        logger.info("registered user %s", user_id)
        if not confirmed:
            code = await self._issue_code(user_id, "signup")
            await self._send_link(email, "Confirm your signup", code, None)
            return {"user": self.public_user(user), "session": None}
        return {"user": self.public_user(user), "session": await self._issue_session(user)}

    async def sign_in(self, email: str, password: str) -> dict:
        user = await self.users.fetch_by_email((email or "").strip())
        if (
            user is None
            or not user["password_hash"]
            or not verify_password(password or "", user["password_hash"])
        ):
            logger.warning("failed sign in for %s", email)
            raise AuthError("Invalid login credentials", "invalid_credentials")
        if not user["email_confirmed"]:
            raise AuthError("Email not confirmed", "email_not_confirmed")
        return await self._issue_session(user)

    async def sign_out(self, access_token: str | None = None, refresh_token: str | None = None) -> None:
        if refresh_token:
            await self.refresh_tokens.revoke(refresh_token)
        if access_token:
            user = await self.get_session(access_token)
            await self.refresh_tokens.revoke_for_user(user["id"])

    async def get_session(self, access_token: str) -> dict:
        """Return the user owning ``access_token`` or raise ``AuthError``."""
        try:
            claims = jwt.decode(
                access_token, self.settings.jwt_secret, algorithms=[self.ALGORITHM]
            )
        except JWTError as e:
            raise AuthError("Invalid or expired access token", "invalid_token") from e
        if claims.get("type") != "access":
            raise AuthError("Invalid or expired access token", "invalid_token")
        user = await self.users.fetch_detail(claims.get("sub", ""))
        if user is None:
            raise AuthError("User not found", "invalid_token")
        return self.public_user(user)

    async def refresh_session(self, refresh_token: str) -> dict:
        row = await self.refresh_tokens.fetch_active(refresh_token or "")
        if row is None:
            raise AuthError("Invalid Refresh Token", "invalid_token")
        issued = datetime.datetime.fromisoformat(row["created_at"])
        await self.refresh_tokens.revoke(refresh_token)
        if self._now() - issued > datetime.timedelta(days=self.settings.refresh_token_days):
            raise AuthError("Refresh Token expired", "invalid_token")
        user = await self.users.fetch_detail(row["user_id"])
        if user is None:
            raise AuthError("User not found", "invalid_token")
        return await self._issue_session(user)

    async def send_magic_link(self, email: str, redirect_to: str | None = None) -> None:
        """Mail a one-time sign-in link, creating the user on first use."""
        email = self._check_email(email)
        user = await self.users.fetch_by_email(email)
        if user is None:
            user_id = await self.users.create(email, None)
            await self._ensure_profile(user_id, None, None)
        else:
            user_id = user["id"]
        code = await self._issue_code(user_id, "magiclink", redirect_to)
        await self._send_link(email, "Your magic link", code, redirect_to)

    async def resend_confirmation(self, email: str) -> bool:
        user = await self.users.fetch_by_email(self._check_email(email))
        if user is None or user["email_confirmed"]:
            return False
        code = await self._issue_code(user["id"], "signup")
        await self._send_link(user["email"], "Confirm your signup", code, None)
        return True

    async def exchange_code_for_session(self, code: str) -> dict:
        """Redeem a link or OAuth code; the email counts as confirmed afterwards."""
        if not code:
            raise AuthError("No authorization code provided", "invalid_code")
        row = await self.codes.consume(code)
        if row is None:
            raise AuthError("Invalid or already used code", "invalid_code")
        if datetime.datetime.fromisoformat(row["expires_at"]) < self._now():
            raise AuthError("Code has expired", "invalid_code")
        user = await self.users.fetch_detail(row["user_id"])
        if user is None:
            raise AuthError("User not found", "invalid_code")
        if not user["email_confirmed"]:
            await self.users.confirm(user["id"])
            user["email_confirmed"] = True
        session = await self._issue_session(user)
        session["redirect_to"] = row["redirect_to"]
        return session

    def oauth_authorize_url(self, provider: str, redirect_to: str) -> str:
        if provider not in self.PROVIDERS:
            raise AuthError(f"Unsupported provider: {provider}", "provider")
        if not self.settings.oauth_google_client_id:
            raise AuthError("Provider google is not configured", "provider")
        query = {
            "client_id": self.settings.oauth_google_client_id,
            "redirect_uri": redirect_to,
            "response_type": "code",
            "scope": "openid email profile",
            "state": secrets.token_urlsafe(16),
        }
        return f"{self.settings.oauth_google_authorize_url}?{urlencode(query)}"
