"""
Authentication Module

User registration and login, password hashing with scrypt, and HS256 JWT
issuance/validation. The ledger core never calls into this module; it only
receives the account id recovered from a verified token.
"""

import hashlib
import hmac
import secrets
from datetime import datetime, timezone, timedelta
from typing import Optional

import jwt

from .errors import InvalidInput, InvalidCredentials
from .storage import LedgerStore
from .logging_config import get_logger, log_action


HASH_SCHEME = "scrypt"


def _generate_salt() -> str:
    """Generate random salt for password hashing"""
    return secrets.token_hex(16)


def _scrypt(password: str, salt: str) -> str:
    return hashlib.scrypt(
        password.encode(),
        salt=salt.encode(),
        n=16384, r=8, p=1
    ).hex()


def hash_password(password: str, salt: Optional[str] = None) -> str:
    """Hash a password as ``scrypt$<salt>$<hex digest>``"""
    salt = salt or _generate_salt()
    return f"{HASH_SCHEME}${salt}${_scrypt(password, salt)}"


def verify_password(password: str, stored_hash: str) -> bool:
    """Verify a password against a stored hash in constant time"""
    try:
        scheme, salt, digest = stored_hash.split("$", 2)
    except ValueError:
        return False
    if scheme != HASH_SCHEME:
        return False
    return hmac.compare_digest(_scrypt(password, salt), digest)


class TokenService:
    """Issues and verifies access tokens whose subject is the account id"""

    def __init__(self, secret: str, algorithm: str = "HS256", expiry_hours: int = 24):
        self.secret = secret
        self.algorithm = algorithm
        self.expiry_hours = expiry_hours

    def issue(self, account_id: int) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": str(account_id),
            "iat": now,
            "exp": now + timedelta(hours=self.expiry_hours),
        }
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def verify(self, token: str) -> int:
        """
        Return the account id carried by a valid token

        Raises:
            InvalidCredentials: If the token is expired, tampered with or malformed
        """
        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            raise InvalidCredentials("Token expired")
        except jwt.InvalidTokenError:
            raise InvalidCredentials("Invalid token")

        subject = payload.get("sub")
        try:
            return int(subject)
        except (TypeError, ValueError):
            raise InvalidCredentials("Invalid token claims")


class UserDirectory:
    """Registers users and exchanges credentials for tokens"""

    def __init__(self, store: LedgerStore, tokens: TokenService, password_min_length: int = 8):
        self.store = store
        self.tokens = tokens
        self.password_min_length = password_min_length
        self.logger = get_logger("wallet.auth")

    def register(self, name: str, password: str) -> int:
        """
        Create a user and its zero-balance account

        Returns:
            The new account id

        Raises:
            InvalidInput: If the name is blank or the password too short
            DuplicateUser: If the name is taken
        """
        name = (name or "").strip()
        if not name:
            raise InvalidInput("name is required")
        if len(password or "") < self.password_min_length:
            raise InvalidInput(f"password must be at least {self.password_min_length} characters")

        account_id = self.store.create_user(name, hash_password(password))
        log_action(
            self.logger, "info", "User registered",
            user_id=account_id, action="register", resource=f"account:{account_id}"
        )
        return account_id

    def login(self, name: str, password: str) -> str:
        """
        Verify credentials and issue an access token

        Raises:
            InvalidCredentials: If the user is unknown or the password is wrong
        """
        user = self.store.find_user((name or "").strip())
        if user is None or not verify_password(password or "", user.password_hash):
            log_action(self.logger, "warning", "Login failed", action="login",
                       extra={"name": name})
            raise InvalidCredentials("Invalid credentials")

        log_action(self.logger, "info", "Login succeeded", user_id=user.id, action="login")
        return self.tokens.issue(user.id)
