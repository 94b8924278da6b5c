import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import validate_email
from pydantic_core import PydanticCustomError
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError

from config import Settings
from database import Database
from errors import AuthError, ConflictError, ForbiddenError, NotFoundError, ValidationError
from models import User

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid username or password"

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/auth/login", auto_error=False)


def user_to_dict(user: User) -> dict:
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "isAdmin": user.is_admin,
    }


class AuthService:
    def __init__(self, db: Database, settings: Settings):
        self.db = db
        self.secret_key = settings.jwt_secret
        self.algorithm = settings.jwt_algorithm
        self.token_ttl = timedelta(minutes=settings.token_expire_minutes)
        self.min_password_length = settings.min_password_length
        self.pwd_context = CryptContext(
            schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=settings.bcrypt_rounds
        )
        # verified against when the username is unknown so both failures take the same time
        self._dummy_hash = self.pwd_context.hash("not-a-real-password")

    def verify_password(self, plain_password: str, hashed_password: str) -> bool:
        try:
            return self.pwd_context.verify(plain_password, hashed_password)
        except (ValueError, TypeError):
            return False

    def get_password_hash(self, password: str) -> str:
        return self.pwd_context.hash(password)

    def create_access_token(self, user: User, expires_delta: Optional[timedelta] = None) -> str:
        now = datetime.now(timezone.utc)
        to_encode = {
            "sub": str(user.id),
            "userId": user.id,
            "username": user.username,
            "isAdmin": user.is_admin,
            "iat": now,
            "exp": now + (expires_delta or self.token_ttl),
        }
        return jwt.encode(to_encode, self.secret_key, algorithm=self.algorithm)

    def register(self, username: Optional[str], email: Optional[str], password: Optional[str]) -> dict:
        if not username or not email or not password:
            raise ValidationError("Username, email, and password are required")
        try:
            _, email = validate_email(email)
        except PydanticCustomError:
            raise ValidationError("Invalid email format")
        if len(password) < self.min_password_length:
            raise ValidationError(
                f"Password must be at least {self.min_password_length} characters long"
            )

        with self.db.transaction() as session:
            existing = session.scalar(
                select(User.id).where(or_(User.username == username, User.email == email))
            )
            if existing is not None:
                raise ConflictError("Username or email already exists")
            user = User(
                username=username,
                email=email,
                password_hash=self.get_password_hash(password),
                is_admin=False,
            )
            session.add(user)
            try:
                session.flush()
            except IntegrityError:
                raise ConflictError("Username or email already exists")

        logger.info("Registered user %s", user.username)
        return {"user": user_to_dict(user), "token": self.create_access_token(user)}

    def login(self, username: Optional[str], password: Optional[str]) -> dict:
        if not username or not password:
            raise ValidationError("Username and password are required")

        with self.db.session() as session:
            user = session.scalar(select(User).where(User.username == username))

        if user is None:
            self.verify_password(password, self._dummy_hash)
            logger.warning("Failed login attempt for user: %s", username)
            raise AuthError(INVALID_CREDENTIALS)
        if not self.verify_password(password, user.password_hash):
            logger.warning("Failed login attempt for user: %s", username)
            raise AuthError(INVALID_CREDENTIALS)

        return {"user": user_to_dict(user), "token": self.create_access_token(user)}

    def verify_token(self, token: Optional[str]) -> User:
        if not token:
            raise AuthError("No token provided")
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
            user_id = int(payload.get("sub"))
        except (JWTError, TypeError, ValueError):
            raise AuthError("Invalid token")

        with self.db.session() as session:
            user = session.get(User, user_id)
        if user is None:
            raise AuthError("Invalid token")
        return user

    def get_profile(self, user_id: int) -> dict:
        with self.db.session() as session:
            user = session.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")
        profile = user_to_dict(user)
        profile["createdAt"] = user.created_at.isoformat() if user.created_at else None
        return profile

    def ensure_admin(self, username: str, email: str, password: str) -> None:
        """Create the configured admin account, or promote it if it already exists."""
        with self.db.transaction() as session:
            user = session.scalar(select(User).where(User.username == username))
            if user is None:
                session.add(User(
                    username=username,
                    email=email,
                    password_hash=self.get_password_hash(password),
                    is_admin=True,
                ))
                logger.info("Created admin account %s", username)
            elif not user.is_admin:
                user.is_admin = True
                logger.info("Promoted %s to admin", username)


# FastAPI dependencies
def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth


def get_current_user(token: Optional[str] = Depends(oauth2_scheme),
                     auth: AuthService = Depends(get_auth_service)) -> User:
    if not token:
        raise AuthError("Authentication required")
    return auth.verify_token(token)


def get_optional_user(token: Optional[str] = Depends(oauth2_scheme),
                      auth: AuthService = Depends(get_auth_service)) -> Optional[User]:
    if not token:
        return None
    return auth.verify_token(token)


def require_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise ForbiddenError("Admins only")
    return user
