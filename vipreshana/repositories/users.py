from __future__ import annotations

from datetime import datetime
from typing import Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.security import hash_password, verify_password
from ..domain.errors import DuplicatePhone
from ..domain.users import User, UserCreate
from ..models.user import UserModel


class UsersRepository(Protocol):
    """Persistence interface for user accounts keyed by phone."""

    async def create(self, payload: UserCreate, now: datetime) -> User: ...

    async def get_by_phone(self, phone: str) -> User | None: ...

    async def verify_credentials(self, phone: str, password: str) -> User | None: ...

    async def set_password(self, phone: str, new_password: str, now: datetime) -> User | None: ...

    async def touch_last_login(self, phone: str, now: datetime) -> User | None: ...


class InMemoryUsersRepository:
    """Simplistic in-memory repository used when no database is configured."""

    def __init__(self) -> None:
        self._users: dict[str, User] = {}
        self._password_hashes: dict[str, str] = {}

    async def create(self, payload: UserCreate, now: datetime) -> User:
        if payload.phone in self._users:
            raise DuplicatePhone()
        data = payload.model_dump(exclude={"password"})
        user = User(**data, created_at=now, updated_at=now)
        self._users[user.phone] = user
        self._password_hashes[user.phone] = hash_password(payload.password)
        return user

    async def get_by_phone(self, phone: str) -> User | None:
        return self._users.get(phone)

    async def verify_credentials(self, phone: str, password: str) -> User | None:
        user = self._users.get(phone)
        if not user:
            return None
        hashed = self._password_hashes.get(phone)
        if not hashed or not verify_password(password, hashed):
            return None
        return user

    async def set_password(self, phone: str, new_password: str, now: datetime) -> User | None:
        user = self._users.get(phone)
        if not user:
            return None
        self._password_hashes[phone] = hash_password(new_password)
        updated = user.model_copy(update={"updated_at": now})
        self._users[phone] = updated
        return updated

    async def touch_last_login(self, phone: str, now: datetime) -> User | None:
        user = self._users.get(phone)
        if not user:
            return None
        updated = user.model_copy(update={"last_login_at": now, "updated_at": now})
        self._users[phone] = updated
        return updated


class SqlAlchemyUsersRepository:
    """SQLAlchemy-backed repository for user persistence."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, payload: UserCreate, now: datetime) -> User:
        model = UserModel(
            phone=payload.phone,
            name=payload.name,
            email=payload.email,
            role=payload.role.value,
            password_hash=hash_password(payload.password),
            created_at=now,
            updated_at=now,
        )
        self._session.add(model)
        try:
            await self._session.commit()
        except IntegrityError as exc:
            await self._session.rollback()
            raise DuplicatePhone() from exc
        await self._session.refresh(model)
        return self._to_domain(model)

    async def get_by_phone(self, phone: str) -> User | None:
        model = await self._load(phone)
        if not model:
            return None
        return self._to_domain(model)

    async def verify_credentials(self, phone: str, password: str) -> User | None:
        model = await self._load(phone)
        if not model:
            return None
        if not verify_password(password, model.password_hash):
            return None
        return self._to_domain(model)

    async def set_password(self, phone: str, new_password: str, now: datetime) -> User | None:
        return await self._update(
            phone, password_hash=hash_password(new_password), updated_at=now
        )

    async def touch_last_login(self, phone: str, now: datetime) -> User | None:
        return await self._update(phone, last_login_at=now, updated_at=now)

    async def _load(self, phone: str) -> UserModel | None:
        result = await self._session.execute(
            select(UserModel).where(UserModel.phone == phone)
        )
        return result.scalar_one_or_none()

    async def _update(self, phone: str, **values) -> User | None:
        result = await self._session.execute(
            update(UserModel)
            .where(UserModel.phone == phone)
            .values(**values)
            .returning(UserModel)
            .execution_options(synchronize_session=False)
        )
        model = result.scalar_one_or_none()
        user = self._to_domain(model) if model else None
        await self._session.commit()
        return user

    @staticmethod
    def _to_domain(model: UserModel) -> User:
        return User(
            id=model.id,
            phone=model.phone,
            name=model.name,
            email=model.email,
            role=model.role,
            created_at=model.created_at,
            updated_at=model.updated_at,
            last_login_at=model.last_login_at,
        )
