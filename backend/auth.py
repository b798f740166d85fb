from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from jose import JWTError, jwt
from passlib.context import CryptContext
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from config import settings
from models import UserRole
from table_gateway import TableGateway, eq, get_gateway
from tenancy import CompanyRef, resolve_session_company

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login")


@dataclass(frozen=True)
class SessionContext:
    """The authenticated caller, passed explicitly to every service call"""
    profile_id: str
    role: str
    email: str
    access_token: str

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against a hash"""
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """Hash a password"""
    return pwd_context.hash(password)


def create_access_token(profile_id: str, role: str, email: str, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token carrying the profile id and role"""
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode = {
        "sub": profile_id,
        "role": role,
        "email": email,
        "exp": expire,
    }
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Decode a token, raising 401 when it is invalid or expired"""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise credentials_exception
    if payload.get("sub") is None or payload.get("role") is None:
        raise credentials_exception
    return payload


async def authenticate(gateway: TableGateway, email: str, password: str) -> Optional[dict]:
    """Return the profile for a matching e-mail / password pair, else None"""
    profile = await gateway.maybe_single("profiles", [eq("email", email.strip().lower())])
    if profile is None:
        return None
    credential = await gateway.maybe_single("user_passwords", [eq("profile_id", profile["id"])])
    if credential is None or not verify_password(password, credential["hashed_password"]):
        return None
    return profile


async def get_session(
    token: str = Depends(oauth2_scheme),
    gateway: TableGateway = Depends(get_gateway),
) -> SessionContext:
    """Get the current authenticated caller"""
    payload = decode_access_token(token)

    profile = await gateway.maybe_single("profiles", [eq("id", payload["sub"])])
    if profile is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return SessionContext(
        profile_id=profile["id"],
        role=profile["role"],
        email=profile["email"],
        access_token=token,
    )


def require_roles(*roles: UserRole):
    """
    Dependency factory for role checks.

    Usage:
        @router.get("/limits")
        async def get_limits(session: SessionContext = Depends(require_roles(UserRole.COMPANY))):
            ...
    """
    allowed = {r.value for r in roles}

    async def checker(session: SessionContext = Depends(get_session)) -> SessionContext:
        if session.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires role: {', '.join(sorted(allowed))}"
            )
        return session
    return checker


async def get_current_company(
    session: SessionContext = Depends(get_session),
    gateway: TableGateway = Depends(get_gateway),
) -> CompanyRef:
    """Company the caller acts for (owner, operator or customer)"""
    return await resolve_session_company(gateway, session)
