"""
Authentication Module with JWT Support
======================================

Identity for the case service.

- AuthService: account storage, password checks, JWT issue/resolve/revoke.
  Stateless; the API uses it per request.
- IdentityProvider: a signed-in session on top of AuthService with an explicit
  subscription interface. Listeners receive the new AuthContext (or None on
  sign-out) on every change; the view-state controller uses it.

Identity is always passed explicitly to the case repository; nothing here is
looked up ambiently by the repository.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

import jwt
from passlib.context import CryptContext
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .config import get_settings
from .errors import BackendError, Unauthenticated, ValidationError
from .validation import validate_sign_in, validate_sign_up

logger = logging.getLogger(__name__)


# =============================================================================
# PASSWORD HASHING
# =============================================================================

# bcrypt truncates passwords at 72 bytes; enforce to avoid 500s.
MAX_PASSWORD_BYTES = 72

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def is_password_too_long(password: str) -> bool:
    """Return True if password exceeds bcrypt 72-byte limit."""
    return len(password.encode("utf-8")) > MAX_PASSWORD_BYTES


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against a hash"""
    if is_password_too_long(plain_password):
        logger.warning("Auth failed: password exceeds bcrypt 72-byte limit")
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError as e:
        logger.warning(f"Auth failed: invalid password format ({e})")
        return False


def get_password_hash(password: str) -> str:
    """Hash a password"""
    if is_password_too_long(password):
        raise ValidationError(f"Password too long (max {MAX_PASSWORD_BYTES} bytes)")
    return pwd_context.hash(password)


# =============================================================================
# JWT TOKEN HANDLING
# =============================================================================

def _create_token(data: dict, token_type: str, expires_delta: timedelta) -> str:
    settings = get_settings()
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + expires_delta
    to_encode.update({"exp": expire, "type": token_type, "jti": uuid.uuid4().hex})
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token"""
    minutes = get_settings().jwt_access_token_expire_minutes
    return _create_token(data, "access", expires_delta or timedelta(minutes=minutes))


def create_refresh_token(data: dict) -> str:
    """Create a JWT refresh token"""
    days = get_settings().jwt_refresh_token_expire_days
    return _create_token(data, "refresh", timedelta(days=days))


def decode_token(token: str) -> Optional[dict]:
    """Decode and validate a JWT token"""
    settings = get_settings()
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except jwt.PyJWTError as e:
        logger.warning(f"Invalid JWT token: {e}")
        return None


# =============================================================================
# AUTH CONTEXT
# =============================================================================

@dataclass(frozen=True)
class AuthContext:
    """The signed-in attorney, as seen by the case repository"""
    user_id: str
    email: str
    name: str = ""


# =============================================================================
# AUTH SERVICE
# =============================================================================

class AuthService:
    """Account storage and token handling over a SQLAlchemy session factory"""

    def __init__(self, session_factory: Callable):
        self._session_factory = session_factory

    @staticmethod
    def _context(user) -> AuthContext:
        return AuthContext(user_id=user.id, email=user.email, name=user.name or "")

    def register(self, email: str, password: str,
                 confirm_password: Optional[str] = None,
                 name: Optional[str] = None) -> AuthContext:
        """Create an account. Raises ValidationError for bad input or a taken email."""
        from .db.models import User

        validate_sign_up(email, password, confirm_password)
        email = email.strip().lower()
        password_hash = get_password_hash(password)

        db = self._session_factory()
        try:
            if db.query(User).filter(User.email == email).first():
                raise ValidationError("Email already registered", fields={"email": "Email already registered"})

            user = User(email=email, name=name or email.split("@", 1)[0], password_hash=password_hash)
            db.add(user)
            db.commit()
            db.refresh(user)
            logger.info(f"Registered user {user.id}")
            return self._context(user)
        except IntegrityError:
            db.rollback()
            raise ValidationError("Email already registered", fields={"email": "Email already registered"})
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Register failed: {e}")
            raise BackendError(str(e))
        finally:
            db.close()

    def authenticate(self, email: str, password: str) -> AuthContext:
        """Check credentials. Raises Unauthenticated when they do not match."""
        from .db.models import User

        validate_sign_in(email, password)
        email = email.strip().lower()

        db = self._session_factory()
        try:
            user = db.query(User).filter(User.email == email, User.is_active == True).first()  # noqa: E712
            if not user:
                logger.warning(f"Auth failed: email {email} not found")
                raise Unauthenticated("Invalid email or password")

            if not user.password_hash or not verify_password(password, user.password_hash):
                logger.warning(f"Auth failed: invalid password for user {user.id}")
                raise Unauthenticated("Invalid email or password")

            user.last_login = datetime.utcnow()
            db.commit()
            return self._context(user)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Authenticate failed: {e}")
            raise BackendError(str(e))
        finally:
            db.close()

    def get_auth_context(self, user_id: str) -> Optional[AuthContext]:
        """AuthContext for an active user id, or None"""
        from .db.models import User

        db = self._session_factory()
        try:
            user = db.query(User).filter(User.id == user_id).first()
            if not user or not user.is_active:
                logger.warning(f"Auth failed: user {user_id} not found or inactive")
                return None
            return self._context(user)
        except SQLAlchemyError as e:
            logger.error(f"User lookup failed: {e}")
            raise BackendError(str(e))
        finally:
            db.close()

    # -------------------------------------------------------------------------
    # Tokens
    # -------------------------------------------------------------------------

    @staticmethod
    def issue_tokens(auth: AuthContext) -> Dict[str, str]:
        token_data = {"sub": auth.user_id, "email": auth.email}
        return {
            "access_token": create_access_token(token_data),
            "refresh_token": create_refresh_token(token_data),
        }

    def is_revoked(self, jti: str) -> bool:
        from .db.models import TokenBlacklist
        from .token_blacklist import is_blacklisted

        cached = is_blacklisted(jti)
        if cached is not None:
            return cached

        db = self._session_factory()
        try:
            return db.query(TokenBlacklist).filter(TokenBlacklist.jti == jti).first() is not None
        except SQLAlchemyError as e:
            logger.error(f"Blacklist lookup failed: {e}")
            raise BackendError(str(e))
        finally:
            db.close()

    def resolve_token(self, token: str, token_type: str = "access") -> Optional[AuthContext]:
        """AuthContext for a valid, unrevoked token of the given type, or None"""
        payload = decode_token(token)
        if not payload or payload.get("type") != token_type:
            return None

        jti = payload.get("jti")
        if jti and self.is_revoked(jti):
            logger.warning(f"Rejected revoked token for user {payload.get('sub')}")
            return None

        user_id = payload.get("sub")
        if not user_id:
            return None
        return self.get_auth_context(user_id)

    def revoke_token(self, token: str) -> bool:
        """Blacklist a token until its natural expiry. Returns False for tokens that are already invalid."""
        from .db.models import TokenBlacklist
        from .token_blacklist import add_to_blacklist

        payload = decode_token(token)
        if not payload or not payload.get("jti"):
            return False

        jti = payload["jti"]
        exp = payload.get("exp")
        expires_at = (
            datetime.fromtimestamp(exp, tz=timezone.utc).replace(tzinfo=None)
            if exp else datetime.utcnow() + timedelta(hours=1)
        )
        token_type = payload.get("type", "access")

        add_to_blacklist(jti, expires_at, token_type)

        db = self._session_factory()
        try:
            if not db.query(TokenBlacklist).filter(TokenBlacklist.jti == jti).first():
                db.add(TokenBlacklist(
                    jti=jti,
                    token_type=token_type,
                    user_id=payload.get("sub"),
                    expires_at=expires_at,
                ))
                db.commit()
            return True
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Revoke token failed: {e}")
            raise BackendError(str(e))
        finally:
            db.close()


# =============================================================================
# IDENTITY PROVIDER
# =============================================================================

IdentityListener = Callable[[Optional[AuthContext]], None]


class IdentityProvider:
    """
    Signed-in identity with change notifications.

    Usage:
        provider = IdentityProvider(AuthService(session_factory))
        unsubscribe = provider.subscribe(on_identity_changed)
        provider.sign_in("a@b.com", "secret1")
        ...
        unsubscribe()
    """

    def __init__(self, auth_service: AuthService):
        self._auth = auth_service
        self._current: Optional[AuthContext] = None
        self._listeners: List[IdentityListener] = []

    @property
    def current(self) -> Optional[AuthContext]:
        return self._current

    def subscribe(self, listener: IdentityListener) -> Callable[[], None]:
        """Register a listener; it is called at once with the current identity. Returns an unsubscribe callable."""
        self._listeners.append(listener)
        listener(self._current)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_current(self, auth: Optional[AuthContext]) -> None:
        self._current = auth
        logger.info(f"Auth state changed: {'user ' + auth.user_id if auth else 'no user'}")
        for listener in list(self._listeners):
            try:
                listener(auth)
            except Exception:
                logger.exception("Identity listener failed")

    def sign_up(self, email: str, password: str,
                confirm_password: Optional[str] = None,
                name: Optional[str] = None) -> AuthContext:
        auth = self._auth.register(email, password, confirm_password=confirm_password, name=name)
        self._set_current(auth)
        return auth

    def sign_in(self, email: str, password: str) -> AuthContext:
        auth = self._auth.authenticate(email, password)
        self._set_current(auth)
        return auth

    def sign_out(self) -> None:
        self._set_current(None)
