# laundry_api/utils.py

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from passlib.context import CryptContext
from jose import JWTError, jwt
from datetime import datetime, date, timedelta, timezone
from zoneinfo import ZoneInfo
from typing import Annotated
from laundry_api import settings
from laundry_api.models import Principal, Role, utcnow
import logging

logger = logging.getLogger(__name__)

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# JWT Configuration
SECRET_KEY = str(settings.SECRET_KEY)
ALGORITHM = "HS256"

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token", auto_error=False)

LEDGER_TZ = ZoneInfo(settings.LEDGER_TIMEZONE)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(principal: Principal, expires_delta: timedelta|None = None) -> str:
    """
    Create a JWT access token for a principal.

    The token carries the account id in `sub` and the role in `role`; the role
    claim is the only source of the caller's role on later requests.
    """
    expire = datetime.now(timezone.utc) + (
        expires_delta if expires_delta else timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode = {"sub": str(principal.actor_id), "role": principal.role.value, "exp": expire}
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


# Dependency to get the authenticated principal
async def get_current_principal(
    token: Annotated[str|None, Depends(oauth2_scheme)]
) -> Principal:
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        actor_id = int(payload.get("sub"))
        role = Role(payload.get("role"))
    except (JWTError, TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return Principal(actor_id=actor_id, role=role)


# Dependency to get current admin principal
async def get_current_admin_user(
    principal: Annotated[Principal, Depends(get_current_principal)]
) -> Principal:
    if principal.role != Role.ADMIN:
        raise HTTPException(status_code=403, detail="Insufficient permissions.")
    return principal


async def get_current_delivery_partner(
    principal: Annotated[Principal, Depends(get_current_principal)]
) -> Principal:
    if principal.role != Role.DELIVERY_PARTNER:
        raise HTTPException(status_code=403, detail="Insufficient permissions.")
    return principal


async def get_current_vendor(
    principal: Annotated[Principal, Depends(get_current_principal)]
) -> Principal:
    if principal.role != Role.VENDOR:
        raise HTTPException(status_code=403, detail="Insufficient permissions.")
    return principal


# Vendors and delivery partners are the only roles with wallets
async def get_current_earner(
    principal: Annotated[Principal, Depends(get_current_principal)]
) -> Principal:
    if principal.role not in (Role.VENDOR, Role.DELIVERY_PARTNER):
        raise HTTPException(status_code=403, detail="Insufficient permissions.")
    return principal


def ledger_day(moment: datetime|None = None) -> date:
    """Calendar day of a naive-UTC timestamp in the ledger timezone."""
    moment = moment or utcnow()
    return moment.replace(tzinfo=timezone.utc).astimezone(LEDGER_TZ).date()


def to_paise(amount: float) -> int:
    return int(round(amount * 100))


def round_money(amount: float) -> float:
    """Snap a rupee amount to whole paise before it is stored or compared."""
    return round(amount, 2)
