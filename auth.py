"""
Auth provider and session/role store.

AuthProvider owns the user directory ("auth_user") and issued sessions
("auth_session"). Sessions are HS256 JWTs whose jti must still be present in
"auth_session", so signing out invalidates the token.

AuthContext is the per-request view of who is calling: it loads the session
for an access token, resolves the caller's role and follows auth state
changes for that user until it is closed.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import jwt
from fastapi import Depends, Header, HTTPException
from passlib.context import CryptContext
from pymongo.errors import PyMongoError

import config
import database
from schemas import Account, AuthUser

logger = logging.getLogger("patrolstore.auth")

USERS = "auth_user"
SESSIONS = "auth_session"
ACCOUNTS = "account"

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"
USER_UPDATED = "USER_UPDATED"
PASSWORD_RECOVERY = "PASSWORD_RECOVERY"

RECOVERY_EXP_MIN = 60
MIN_PASSWORD_LENGTH = 6

# NamespaceNotFound
MISSING_TABLE_CODES = {26}
MISSING_TABLE_MARKERS = ("relation", "does not exist", "ns not found", "500")

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

AuthListener = Callable[[str, str, Optional["Session"]], None]


class AuthError(Exception):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@dataclass
class Session:
    access_token: str
    user: Dict[str, Any]
    expires_at: datetime
    token_type: str = "bearer"


class Subscription:
    def __init__(self, listeners: List[AuthListener], callback: AuthListener):
        self._listeners = listeners
        self._callback = callback

    def unsubscribe(self) -> None:
        if self._callback in self._listeners:
            self._listeners.remove(self._callback)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def is_missing_account_table_error(error: Optional[BaseException]) -> bool:
    if error is None:
        return False
    if getattr(error, "code", None) in MISSING_TABLE_CODES:
        return True
    message = str(error)
    return any(marker in message for marker in MISSING_TABLE_MARKERS)


class AuthProvider:
    def __init__(self, secret: Optional[str] = None, exp_minutes: Optional[int] = None):
        self.secret = secret or config.JWT_SECRET
        self.exp_minutes = exp_minutes or config.JWT_EXP_MIN
        self._listeners: List[AuthListener] = []

    # Notifications

    def on_auth_state_change(self, callback: AuthListener) -> Subscription:
        self._listeners.append(callback)
        return Subscription(self._listeners, callback)

    def _emit(self, event: str, user_id: str, session: Optional[Session] = None) -> None:
        for listener in list(self._listeners):
            listener(event, user_id, session)

    # Tokens

    def _encode(self, user_id: str, purpose: str, expires: datetime, jti: Optional[str] = None) -> str:
        payload = {
            "sub": user_id,
            "purpose": purpose,
            "exp": expires,
            "iat": database.now(),
        }
        if jti:
            payload["jti"] = jti
        return jwt.encode(payload, self.secret, algorithm="HS256")

    def _decode(self, token: str, purpose: str = "access") -> Optional[Dict[str, Any]]:
        try:
            payload = jwt.decode(token, self.secret, algorithms=["HS256"])
        except jwt.PyJWTError:
            return None
        if payload.get("purpose") != purpose:
            return None
        return payload

    def _public_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        user = database.get_document(USERS, user_id)
        if user:
            user.pop("password_hash", None)
        return user

    def _start_session(self, user_id: str) -> Session:
        jti = uuid.uuid4().hex
        expires = database.now() + timedelta(minutes=self.exp_minutes)
        token = self._encode(user_id, "access", expires, jti=jti)
        database.db[SESSIONS].insert_one({
            "_id": jti,
            "user_id": user_id,
            "created_date": database.now(),
            "expires_at": expires,
        })
        session = Session(access_token=token, user=self._public_user(user_id), expires_at=expires)
        logger.info("User %s signed in", user_id)
        self._emit(SIGNED_IN, user_id, session)
        return session

    # Users and sessions

    def sign_up(self, email: str, password: str, full_name: Optional[str] = None) -> Session:
        email = email.lower()
        if database.find_document(USERS, {"email": email}):
            raise AuthError("User already registered")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise AuthError(f"Password should be at least {MIN_PASSWORD_LENGTH} characters")
        user = AuthUser(
            email=email,
            password_hash=hash_password(password),
            user_metadata={"full_name": full_name or "", "role": "user"},
        )
        user_id = database.create_document(USERS, user)
        if database.collection_exists(ACCOUNTS):
            account = Account(email=email, full_name=full_name)
            database.create_document(ACCOUNTS, account, doc_id=database.parse_id(user_id))
        return self._start_session(user_id)

    def sign_in_with_password(self, email: str, password: str) -> Session:
        user = database.db[USERS].find_one({"email": email.lower()})
        if not user or not verify_password(password, user.get("password_hash", "")):
            raise AuthError("Invalid login credentials")
        return self._start_session(str(user["_id"]))

    def get_session(self, token: Optional[str]) -> Optional[Session]:
        if not token:
            return None
        payload = self._decode(token)
        if not payload:
            return None
        if not database.db[SESSIONS].find_one({"_id": payload.get("jti")}):
            return None
        user = self._public_user(payload["sub"])
        if not user:
            return None
        expires = datetime.fromtimestamp(payload["exp"], tz=timezone.utc)
        return Session(access_token=token, user=user, expires_at=expires)

    def get_user(self, token: Optional[str]) -> Optional[Dict[str, Any]]:
        session = self.get_session(token)
        return session.user if session else None

    def sign_out(self, token: str) -> None:
        payload = self._decode(token)
        if not payload:
            return
        database.db[SESSIONS].delete_one({"_id": payload.get("jti")})
        logger.info("User %s signed out", payload["sub"])
        self._emit(SIGNED_OUT, payload["sub"])

    def update_user(self, user_id: str, user_metadata: Optional[Dict[str, str]] = None,
                    password: Optional[str] = None) -> Dict[str, Any]:
        existing = database.get_document(USERS, user_id)
        if not existing:
            raise AuthError("User not found", status_code=404)
        update: Dict[str, Any] = {}
        if user_metadata:
            update["user_metadata"] = {**existing.get("user_metadata", {}), **user_metadata}
        if password:
            if len(password) < MIN_PASSWORD_LENGTH:
                raise AuthError(f"Password should be at least {MIN_PASSWORD_LENGTH} characters")
            update["password_hash"] = hash_password(password)
        if update:
            database.update_document(USERS, user_id, update)
        user = self._public_user(user_id)
        self._emit(USER_UPDATED, user_id)
        return user

    def list_users(self) -> List[Dict[str, Any]]:
        users = database.get_documents(USERS, sort=database.NEWEST_FIRST)
        for u in users:
            u.pop("password_hash", None)
        return users

    def reset_password_for_email(self, email: str, redirect_to: Optional[str] = None) -> Optional[str]:
        user = database.db[USERS].find_one({"email": email.lower()})
        if not user:
            logger.info("Password recovery requested for unknown email")
            return None
        expires = database.now() + timedelta(minutes=RECOVERY_EXP_MIN)
        token = self._encode(str(user["_id"]), "recovery", expires)
        link = f"{redirect_to or config.SITE_URL + '/pages/ResetPassword'}?token={token}"
        logger.info("Password recovery link for %s: %s", user["email"], link)
        return token

    def reset_password(self, recovery_token: str, new_password: str) -> Dict[str, Any]:
        payload = self._decode(recovery_token, purpose="recovery")
        if not payload:
            raise AuthError("Invalid or expired recovery token", status_code=401)
        user = self.update_user(payload["sub"], password=new_password)
        self._emit(PASSWORD_RECOVERY, payload["sub"])
        return user


class AuthContext:
    """Session, user and resolved role for one caller.

    Role resolution never blocks: a missing account table, a failed lookup or
    a missing row all resolve to "user".
    """

    def __init__(self, provider: AuthProvider, access_token: Optional[str] = None,
                 role_source: Optional[str] = None):
        self.provider = provider
        self.access_token = access_token
        self.role_source = role_source or config.ROLE_SOURCE
        self.session: Optional[Session] = None
        self.user: Optional[Dict[str, Any]] = None
        self.role: Optional[str] = None
        self.account: Optional[Dict[str, Any]] = None
        # None = unknown, True = exists, False = missing
        self.account_table_exists: Optional[bool] = None
        self.loading = True
        self._subscription: Optional[Subscription] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def __enter__(self) -> "AuthContext":
        return self.init()

    def __exit__(self, *exc_info) -> None:
        self.close()

    def init(self) -> "AuthContext":
        try:
            exists = self.check_table_exists() if self.role_source == "account" else None
            self.session = self.provider.get_session(self.access_token)
            self.user = self.session.user if self.session else None
            if self.user:
                self.load_account_and_role(self.user["id"], exists)
            else:
                self.role = None
                self.account = None
        except PyMongoError as exc:
            logger.error("Error getting session: %s", exc)
            self.role = "user"
            self.account = None
        finally:
            self.loading = False
        self._subscription = self.provider.on_auth_state_change(self._on_auth_state_change)
        return self

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def _on_auth_state_change(self, event: str, user_id: str, session: Optional[Session]) -> None:
        if not self.user or user_id != self.user["id"]:
            return
        if event == SIGNED_OUT:
            self.session = None
            self.user = None
            self.role = None
            self.account = None
            return
        current = session or self.provider.get_session(self.access_token)
        if current:
            self.session = current
            self.user = current.user
        self.load_account_and_role(user_id)

    def check_table_exists(self) -> bool:
        if self.account_table_exists is False:
            return False
        try:
            present = database.collection_exists(ACCOUNTS)
        except PyMongoError as exc:
            logger.warning("Account table check failed, disabling role checks: %s", exc)
            self.account_table_exists = False
            return False
        if not present:
            logger.warning("Account table does not exist; admin roles are unavailable")
        self.account_table_exists = present
        return present

    def load_account_and_role(self, user_id: Optional[str], table_exists: Optional[bool] = None) -> None:
        if not user_id:
            self.role = None
            self.account = None
            return

        if self.role_source == "metadata":
            metadata = (self.user or {}).get("user_metadata") or {}
            self.role = metadata.get("role") or "user"
            return

        if table_exists is None:
            table_exists = self.account_table_exists
        if table_exists is None:
            table_exists = self.check_table_exists()
        if not table_exists:
            self.role = "user"
            self.account = None
            return

        try:
            account = database.get_document(ACCOUNTS, user_id)
        except PyMongoError as exc:
            if is_missing_account_table_error(exc):
                self.account_table_exists = False
            else:
                logger.warning("Role lookup failed for %s: %s", user_id, exc)
            self.role = "user"
            self.account = None
            return

        self.role = (account or {}).get("role") or "user"
        self.account = account

    def sign_out(self) -> None:
        if self.access_token:
            self.provider.sign_out(self.access_token)


provider = AuthProvider()


# FastAPI dependencies

def get_auth_provider() -> AuthProvider:
    return provider


def bearer_token(authorization: Optional[str] = Header(default=None)) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=401, detail="Invalid authorization header")
    return token


def get_auth(token: Optional[str] = Depends(bearer_token),
             auth_provider: AuthProvider = Depends(get_auth_provider)):
    context = AuthContext(auth_provider, token)
    context.init()
    try:
        yield context
    finally:
        context.close()


def require_user(auth: AuthContext = Depends(get_auth)) -> AuthContext:
    if not auth.user:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return auth


def require_admin(auth: AuthContext = Depends(require_user)) -> AuthContext:
    if not auth.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return auth
