"""Create a back-office operator in the Luke Robert Hair database.

Usage:
    python scripts/create_admin.py hello@lukeroberthair.com 'a-long-password'
"""

import asyncio
import sys

from sqlalchemy import select

from app.auth.service import hash_password
from app.database import async_session
from app.models.enums import UserRole
from app.models.user import User

MIN_PASSWORD_LENGTH = 12


async def create_admin(email: str, password: str) -> None:
    email = email.strip().lower()
    async with async_session() as db:
        result = await db.execute(select(User).where(User.email == email))
        if result.scalar_one_or_none():
            print(f"Error: User with email '{email}' already exists.")
            sys.exit(1)

        user = User(
            email=email,
            password_hash=hash_password(password),
            role=UserRole.ADMIN,
            is_active=True,
        )
        db.add(user)
        await db.commit()

        print(f"Admin user created successfully: {email} (id={user.id})")


def main() -> None:
    if len(sys.argv) != 3:
        print("Usage: python scripts/create_admin.py <email> <password>")
        sys.exit(1)

    email, password = sys.argv[1], sys.argv[2]
    if len(password) < MIN_PASSWORD_LENGTH:
        print(f"Error: password must be at least {MIN_PASSWORD_LENGTH} characters.")
        sys.exit(1)

    asyncio.run(create_admin(email, password))


if __name__ == "__main__":
    main()
