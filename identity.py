"""
Phone-based identity: registration, one-time code verification, login and
session tokens.
"""
import hmac
import logging
import re
from typing import Callable, Optional

from pymongo.errors import DuplicateKeyError

from database import Store, as_utc, oid, utcnow
from errors import (
    AuthError,
    ConflictError,
    DeliveryError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
    VerificationRequiredError,
)
from schemas import User
from security import (
    BCRYPT_ROUNDS,
    SECRET_KEY,
    decode_token,
    hash_password,
    issue_token,
    new_verification_code,
    verify_password,
)

log = logging.getLogger(__name__)

SmsSender = Callable[[str, str], None]

PUBLIC_USER_FIELDS = (
    "phone", "country_code", "first_name", "last_name", "email", "avatar",
    "theme", "language", "role", "verified", "created_at", "last_login",
)
PROFILE_FIELDS = ("first_name", "last_name", "email", "theme", "language")
# bcrypt only hashes the first 72 bytes
MAX_PASSWORD_BYTES = 72


def log_sms(phone: str, message: str) -> None:
    # No SMS provider is wired in; the message only reaches the debug log.
    log.debug("SMS to %s: %s", phone, message)


def check_password_strength(password: str) -> None:
    if len(password or "") < 8:
        raise ValidationError("Password must be at least 8 characters")
    if len(password.encode()) > MAX_PASSWORD_BYTES:
        raise ValidationError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
    if not (re.search(r"[a-z]", password) and re.search(r"[A-Z]", password) and re.search(r"\d", password)):
        raise ValidationError("Password must contain upper case, lower case and digits")


def public_user(doc: dict) -> dict:
    user = {"id": str(doc["_id"])}
    for field in PUBLIC_USER_FIELDS:
        user[field] = doc.get(field)
    return user


def require_admin(user: dict) -> dict:
    if user.get("role") != "admin":
        raise PermissionDeniedError()
    return user


class IdentityService:
    def __init__(self, store: Store, sms_sender: Optional[SmsSender] = None,
                 rounds: int = BCRYPT_ROUNDS, secret: str = SECRET_KEY):
        self.store = store
        self.send_sms = sms_sender or log_sms
        self.rounds = rounds
        self.secret = secret

    @property
    def users(self):
        return self.store["users"]

    def register(self, phone: str, country_code: str, password: str,
                 first_name: Optional[str] = None, last_name: Optional[str] = None) -> dict:
        check_password_strength(password)
        if self.users.find_one({"phone": phone}):
            raise ConflictError("Phone number already registered")

        code, expires = new_verification_code()
        user = User(
            phone=phone,
            country_code=country_code,
            password_hash=hash_password(password, self.rounds),
            first_name=first_name,
            last_name=last_name,
            verification_code=code,
            verification_expires=expires,
        )
        try:
            user_id = self.store.create_document("users", user)
        except DuplicateKeyError:
            raise ConflictError("Phone number already registered")

        try:
            self._send_code(phone, code)
        except DeliveryError:
            self.users.delete_one({"_id": oid(user_id)})
            raise

        log.info("User registered: %s (%s)", user_id, country_code)
        return {"userId": user_id, "requiresVerification": True}

    def verify(self, phone: str, code: str) -> dict:
        user = self.users.find_one({"phone": phone})
        stored = (user or {}).get("verification_code")
        if not stored or not hmac.compare_digest(stored.encode(), (code or "").encode()):
            raise ValidationError("Invalid or expired code")
        expires = user.get("verification_expires")
        now = utcnow()
        if expires is None or as_utc(expires) < now:
            raise ValidationError("Invalid or expired code")

        # the code filter makes the code single use even for concurrent requests
        result = self.users.update_one(
            {"_id": user["_id"], "verification_code": stored},
            {
                "$set": {"verified": True, "verified_at": now, "updated_at": now},
                "$unset": {"verification_code": "", "verification_expires": ""},
            },
        )
        if result.modified_count == 0:
            raise ValidationError("Invalid or expired code")

        user = self.users.find_one({"_id": user["_id"]})
        log.info("User verified: %s", user["_id"])
        return self._session(user)

    def resend_code(self, phone: str) -> dict:
        user = self.users.find_one({"phone": phone})
        if not user:
            raise NotFoundError("User not found")
        if user.get("verified"):
            raise ValidationError("User already verified")
        code, expires = new_verification_code()
        self.users.update_one(
            {"_id": user["_id"]},
            {"$set": {"verification_code": code, "verification_expires": expires, "updated_at": utcnow()}},
        )
        self._send_code(phone, code)
        log.info("Verification code resent to user %s", user["_id"])
        return {"message": "Verification code sent"}

    def login(self, phone: str, password: str) -> dict:
        user = self.users.find_one({"phone": phone})
        if not user:
            raise AuthError("Invalid credentials")
        if not user.get("verified"):
            raise VerificationRequiredError()
        if not verify_password(password, user.get("password_hash", "")):
            raise AuthError("Invalid credentials")

        now = utcnow()
        self.users.update_one({"_id": user["_id"]}, {"$set": {"last_login": now, "updated_at": now}})
        user["last_login"] = now
        log.info("Login: user %s", user["_id"])
        return self._session(user)

    def authenticate(self, token: Optional[str]) -> dict:
        if not token:
            raise AuthError("Authentication token required")
        claims = decode_token(token, self.secret)
        try:
            user_id = oid(claims["userId"])
        except ValidationError:
            raise AuthError("Invalid token")
        user = self.users.find_one({"_id": user_id})
        if not user:
            raise AuthError("User not found")
        if not user.get("verified"):
            raise VerificationRequiredError()
        return user

    def profile(self, user_id: str) -> dict:
        user = self.users.find_one({"_id": oid(user_id)})
        if not user:
            raise NotFoundError("User not found")
        return public_user(user)

    def update_profile(self, user_id: str, **fields) -> dict:
        updates = {k: v for k, v in fields.items() if k in PROFILE_FIELDS and v is not None}
        if not updates:
            raise ValidationError("No data to update")
        updates["updated_at"] = utcnow()
        result = self.users.update_one({"_id": oid(user_id)}, {"$set": updates})
        if result.matched_count == 0:
            raise NotFoundError("User not found")
        return self.profile(user_id)

    def seed_admin(self, phone: str, password: str, country_code: str = "+58") -> str:
        """Make ``phone`` the one admin account, creating it if needed."""
        now = utcnow()
        existing = self.users.find_one({"phone": phone})
        if existing:
            admin_id = existing["_id"]
            self.users.update_one({"_id": admin_id}, {"$set": {
                "role": "admin",
                "verified": True,
                "password_hash": hash_password(password, self.rounds),
                "updated_at": now,
            }})
        else:
            admin = User(
                phone=phone,
                country_code=country_code,
                password_hash=hash_password(password, self.rounds),
                first_name="Admin",
                role="admin",
                verified=True,
            )
            admin_id = oid(self.store.create_document("users", admin))
        # demote any other admins
        self.users.update_many({"_id": {"$ne": admin_id}, "role": "admin"}, {"$set": {"role": "user"}})
        log.info("Admin account ready: %s", admin_id)
        return str(admin_id)

    def _send_code(self, phone: str, code: str) -> None:
        try:
            self.send_sms(phone, f"Your Russo verification code is {code}. It expires in 10 minutes.")
        except Exception as e:
            log.error("Could not deliver verification code to %s: %s", phone, e)
            raise DeliveryError() from e

    def _session(self, user: dict) -> dict:
        token = issue_token(str(user["_id"]), user["phone"], secret=self.secret)
        return {"token": token, "user": public_user(user)}
