"""Authentication service: password hashing, JWT tokens and account creation."""

import logging
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from wasteex.app.config import get_settings
from wasteex.domain.errors import ConflictError
from wasteex.domain.models import Company, User, utcnow
from wasteex.domain.schemas import RegisterRequest

logger = logging.getLogger(__name__)

settings = get_settings()
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def create_access_token(user_id: str, role: str) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.jwt_expiration_minutes)
    payload = {"sub": user_id, "role": role, "exp": expire}
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict | None:
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(select(User).where(func.lower(User.email) == email.lower()))
    return result.scalar_one_or_none()


async def get_company_by_gstin(db: AsyncSession, gstin: str) -> Company | None:
    result = await db.execute(select(Company).where(Company.gstin == gstin.upper()))
    return result.scalar_one_or_none()


async def register_user(db: AsyncSession, data: RegisterRequest) -> User:
    """Create a user and their company. Raises ConflictError on duplicate email or GSTIN."""
    email = data.email.lower()
    if await get_user_by_email(db, email):
        raise ConflictError(f"user with email {email} already exists")
    gstin = data.company.gstin.upper()
    if await get_company_by_gstin(db, gstin):
        raise ConflictError(f"company with GSTIN {gstin} already registered")

    company = Company(
        name=data.company.name,
        gstin=gstin,
        pan=data.company.pan.upper() if data.company.pan else None,
        address=data.company.address.model_dump(by_alias=True) if data.company.address else None,
        industry=data.company.industry,
        established_year=data.company.established_year,
        employee_count=data.company.employee_count.value if data.company.employee_count else None,
    )
    db.add(company)
    await db.flush()

    user = User(
        email=email,
        password_hash=hash_password(data.password),
        name=data.name,
        role=data.role,
        phone=data.phone,
        company_id=company.id,
    )
    user.company = company
    db.add(user)
    await db.commit()

    logger.info("Registered %s %s (company=%s)", user.role, user.id, company.id)
    return user


async def authenticate(db: AsyncSession, email: str, password: str) -> User | None:
    """Return the user if credentials match an active account."""
    user = await get_user_by_email(db, email)
    if not user or not user.is_active or not verify_password(password, user.password_hash):
        return None
    user.last_login_at = utcnow()
    await db.commit()
    return user
