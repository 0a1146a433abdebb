"""
Accounts and sessions

Passwords are bcrypt hashes, sessions are HS256 JWTs carried in an HTTP-only
cookie (or a bearer header). Nothing is stored server side for a session, so
logging out only clears the cookie.
"""

import logging
import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

import bcrypt
import jwt
from fastapi import Response
from pymongo.errors import DuplicateKeyError

from config import (
    COOKIE_NAME,
    MIN_PASSWORD_LENGTH,
    REMEMBER_ME_TOKEN_TTL,
    RESET_CODE_LENGTH,
    RESET_CODE_MAX_ATTEMPTS,
    RESET_CODE_TTL,
    TOKEN_TTL,
    Settings,
)
from database import ResetCodeStore, UserStore
from errors import AuthError, ConflictError, IncompleteProfileError, NotFoundError, ValidationError
from mailer import Mailer
from schemas import PasswordReset, User

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
WHATSAPP_PATTERN = re.compile(r"^(\+234|0)[0-9]{10}$")
INVALID_CREDENTIALS = "Invalid email or password"
INVALID_RESET_CODE = "Invalid or expired reset code"


# Utilities

def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, stored: Optional[str]) -> bool:
    if not stored:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), stored.encode("utf-8"))
    except ValueError:
        return False


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def normalize_whatsapp(number: str) -> str:
    return re.sub(r"\s", "", number or "")


def generate_reset_code(length: int = RESET_CODE_LENGTH) -> str:
    return f"{secrets.randbelow(10 ** length):0{length}d}"


def public_user(user: dict) -> dict:
    return {
        "id": str(user["_id"]),
        "name": user.get("name"),
        "email": user.get("email"),
        "school": user.get("school", ""),
        "whatsappNumber": user.get("whatsapp_number", ""),
        "isVendor": user.get("is_vendor", True),
        "profileComplete": user.get("profile_complete", False),
    }


def vendor_summary(user: dict) -> dict:
    return {
        "id": str(user["_id"]),
        "name": user.get("name"),
        "email": user.get("email"),
        "whatsappNumber": user.get("whatsapp_number", ""),
        "school": user.get("school", ""),
    }


# Tokens and cookies

def issue_token(user_id: str, secret: str, remember_me: bool = False) -> Tuple[str, timedelta]:
    ttl = REMEMBER_ME_TOKEN_TTL if remember_me else TOKEN_TTL
    now = datetime.now(timezone.utc)
    token = jwt.encode({"sub": user_id, "iat": now, "exp": now + ttl}, secret, algorithm=JWT_ALGORITHM)
    return token, ttl


def decode_token(token: str, secret: str) -> str:
    """Return the user id in the token; any verification problem is an AuthError."""
    try:
        payload = jwt.decode(token, secret, algorithms=[JWT_ALGORITHM], options={"require": ["sub", "exp"]})
    except jwt.PyJWTError as e:
        raise AuthError("Invalid or expired token. Please login.", detail=str(e)) from e
    return payload["sub"]


def set_auth_cookie(response: Response, token: str, ttl: timedelta, secure: bool) -> None:
    response.set_cookie(
        COOKIE_NAME,
        token,
        max_age=int(ttl.total_seconds()),
        httponly=True,
        secure=secure,
        samesite="lax",
    )


def clear_auth_cookie(response: Response, secure: bool) -> None:
    response.delete_cookie(COOKIE_NAME, httponly=True, secure=secure, samesite="lax")


# Gates

def check_vendor(user: dict) -> dict:
    if not user.get("isVendor"):
        raise AuthError("Vendor access required", status_code=403)
    return user


def check_profile_complete(user: dict) -> dict:
    if not user.get("profileComplete"):
        raise AuthError("Please complete your profile first", status_code=403)
    return user


class AuthService:
    def __init__(self, users: UserStore, resets: ResetCodeStore, mailer: Mailer, settings: Settings):
        self.users = users
        self.resets = resets
        self.mailer = mailer
        self.settings = settings

    def _session(self, user: dict, remember_me: bool = False) -> Tuple[str, timedelta]:
        return issue_token(str(user["_id"]), self.settings.jwt_secret, remember_me)

    def sign_up(self, name: Optional[str], email: Optional[str], password: Optional[str], is_vendor: bool = True):
        email = normalize_email(email)
        if not name or not name.strip() or not email or not password:
            raise ValidationError("Name, email, and password are required")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        if self.users.get_by_email(email):
            raise ConflictError("Email already registered")
        try:
            user = self.users.create(User(
                name=name.strip(),
                email=email,
                password_hash=hash_password(password),
                is_vendor=is_vendor,
            ))
        except DuplicateKeyError:
            raise ConflictError("Email already registered")
        logger.info("Account created for %s", email)
        return public_user(user), self._session(user)

    def complete_profile(self, email: Optional[str], school: Optional[str], whatsapp_number: Optional[str]):
        email = normalize_email(email)
        if not email or not school or not school.strip() or not whatsapp_number:
            raise ValidationError("Email, school, and WhatsApp number are required")
        number = normalize_whatsapp(whatsapp_number)
        if not WHATSAPP_PATTERN.match(number):
            raise ValidationError("Invalid WhatsApp number format")
        user = self.users.get_by_email(email)
        if not user:
            raise NotFoundError("User not found")
        user = self.users.update(str(user["_id"]), {
            "school": school.strip(),
            "whatsapp_number": number,
            "profile_complete": True,
        })
        logger.info("Profile completed for %s", email)
        return public_user(user), self._session(user)

    def login(self, email: Optional[str], password: Optional[str], remember_me: bool = False):
        email = normalize_email(email)
        if not email or not password:
            raise ValidationError("Email and password are required")
        user = self.users.get_by_email(email)
        if not user or not verify_password(password, user.get("password_hash")):
            raise AuthError(INVALID_CREDENTIALS)
        if not user.get("profile_complete"):
            raise IncompleteProfileError(user["email"])
        logger.info("Login for %s", email)
        return public_user(user), self._session(user, remember_me)

    def current_user(self, token: Optional[str]) -> dict:
        if not token:
            raise AuthError("Access token required. Please login.")
        user = self.users.get_by_id(decode_token(token, self.settings.jwt_secret))
        if not user:
            raise NotFoundError("User not found")
        return public_user(user)

    def forgot_password(self, email: Optional[str]) -> Optional[str]:
        """Send a reset code if the account exists. Returns the code, or None for unknown emails."""
        email = normalize_email(email)
        if not email:
            raise ValidationError("Email is required")
        if not self.users.get_by_email(email):
            return None
        code = generate_reset_code()
        self.resets.save(PasswordReset(
            email=email,
            code_hash=bcrypt.hashpw(code.encode("utf-8"), bcrypt.gensalt()),
            expires_at=datetime.now(timezone.utc) + RESET_CODE_TTL,
        ))
        try:
            self.mailer.send_reset_code(email, code, int(RESET_CODE_TTL.total_seconds() // 60))
        except Exception:
            self.resets.delete(email)
            raise
        return code

    def reset_password(self, email: Optional[str], code: Optional[str], new_password: Optional[str]) -> dict:
        email = normalize_email(email)
        if not email or not code or not new_password:
            raise ValidationError("Email, code, and new password are required")
        if len(new_password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        reset = self.resets.get(email)
        if not reset:
            raise ValidationError(INVALID_RESET_CODE)
        expires_at = reset["expires_at"]
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        if expires_at < datetime.now(timezone.utc) or reset.get("failed_attempts", 0) >= RESET_CODE_MAX_ATTEMPTS:
            self.resets.delete(email)
            raise ValidationError(INVALID_RESET_CODE)
        if not bcrypt.checkpw(code.strip().encode("utf-8"), reset["code_hash"]):
            self.resets.record_failure(email)
            logger.warning("Rejected reset code for %s", email)
            raise ValidationError(INVALID_RESET_CODE)
        user = self.users.get_by_email(email)
        if not user:
            self.resets.delete(email)
            raise ValidationError(INVALID_RESET_CODE)
        self.users.update(str(user["_id"]), {"password_hash": hash_password(new_password)})
        self.resets.delete(email)
        logger.info("Password reset for %s", email)
        return {"id": str(user["_id"]), "email": user["email"]}

    def google_callback(self, google_id: Optional[str], name: Optional[str], email: Optional[str]):
        email = normalize_email(email)
        if not google_id or not name or not email:
            raise ValidationError("Google ID, name, and email are required")
        user = self.users.get_by_email(email)
        try:
            if user:
                if not user.get("google_id"):
                    user = self.users.update(str(user["_id"]), {"google_id": google_id})
            else:
                user = self.users.create(User(name=name.strip(), email=email, google_id=google_id))
                logger.info("Account created for %s via Google", email)
        except DuplicateKeyError:
            raise ConflictError("Google account already linked to another user")
        return public_user(user), self._session(user)
