"""Create an administrator account; admins cannot sign up through ``/register``."""

from __future__ import annotations

import argparse
import asyncio
import getpass

import structlog

from vipreshana.core.clock import utcnow
from vipreshana.core.config import get_settings
from vipreshana.core.logging import configure_logging, mask_phone
from vipreshana.db import dispose_engine, get_sessionmaker, init_db
from vipreshana.domain.errors import DuplicatePhone
from vipreshana.domain.phones import normalize_phone
from vipreshana.domain.users import UserCreate, UserRole
from vipreshana.repositories.users import SqlAlchemyUsersRepository

logger = structlog.get_logger("create_admin")


async def _create_admin(phone: str, name: str, password: str, email: str | None) -> None:
    await init_db()
    session_factory = get_sessionmaker()
    try:
        async with session_factory() as session:
            users = SqlAlchemyUsersRepository(session)
            user = await users.create(
                UserCreate(
                    phone=normalize_phone(phone),
                    name=name,
                    email=email,
                    role=UserRole.ADMIN,
                    password=password,
                ),
                utcnow(),
            )
    finally:
        await dispose_engine()
    logger.info("admin.created", phone=mask_phone(user.phone), user_id=str(user.id))


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("phone")
    parser.add_argument("name")
    parser.add_argument("--email", default=None)
    args = parser.parse_args()

    settings = get_settings()
    configure_logging(settings)
    if not settings.database_url:
        raise SystemExit("DATABASE_URL must be set to create an admin account")

    password = getpass.getpass("Admin password: ")
    try:
        asyncio.run(_create_admin(args.phone, args.name, password, args.email))
    except DuplicatePhone as exc:
        raise SystemExit(f"{exc.detail}") from exc


if __name__ == "__main__":
    main()
