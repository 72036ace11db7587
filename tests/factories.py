"""
Builders for directory records used across the test suites.
"""

import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.kernel.audit.ledger import AuditLedger
from src.kernel.identity.password import hash_password
from src.kernel.models.user import User, UserRole, UserStatus
from src.kernel.permissions.scope import Principal

DEFAULT_PASSWORD = "CorrectHorse9"


class BrokenLedger(AuditLedger):
    """Ledger whose storage always fails."""

    async def _write(self, entry):
        raise RuntimeError("audit store unavailable")


def make_user(
    email: str,
    role: UserRole = UserRole.AGENT,
    supervisor: Optional[User] = None,
    status: UserStatus = UserStatus.ACTIVE,
    password: str = DEFAULT_PASSWORD,
    **fields,
) -> User:
    """Build (not persist) a directory record."""
    return User(
        id=uuid.uuid4(),
        email=email,
        password_hash=hash_password(password),
        role=role,
        status=status,
        supervisor_id=supervisor.id if supervisor else None,
        **fields,
    )


def principal_of(user: User) -> Principal:
    return Principal(id=user.id, role=user.role)


@dataclass
class Directory:
    """One record per role, with an agent on each side of the supervisor line."""

    super_admin: User
    admin: User
    supervisor: User
    other_supervisor: User
    own_agent: User
    foreign_agent: User
    client: User

    def principal(self, name: str) -> Principal:
        return principal_of(getattr(self, name))


SEED_ORDER = ("super_admin", "admin", "supervisor", "other_supervisor", "own_agent", "foreign_agent", "client")


def build_directory() -> Directory:
    super_admin = make_user("root@example.com", UserRole.SUPER_ADMIN, first_name="Rita", last_name="Root")
    admin = make_user("admin@example.com", UserRole.ADMIN, first_name="Adam", last_name="Admin")
    supervisor = make_user("sue@example.com", UserRole.SUPERVISOR, first_name="Sue", last_name="Visor")
    other_supervisor = make_user("otto@example.com", UserRole.SUPERVISOR, first_name="Otto", last_name="Other")
    own_agent = make_user(
        "alice@example.com", UserRole.AGENT, supervisor=supervisor,
        first_name="Alice", last_name="Agent", phone="555-0101",
    )
    foreign_agent = make_user(
        "frank@example.com", UserRole.AGENT, supervisor=other_supervisor,
        first_name="Frank", last_name="Foreign", phone="555-0202",
    )
    client = make_user("carol@example.com", UserRole.CLIENT, first_name="Carol", last_name="Client")
    return Directory(
        super_admin=super_admin,
        admin=admin,
        supervisor=supervisor,
        other_supervisor=other_supervisor,
        own_agent=own_agent,
        foreign_agent=foreign_agent,
        client=client,
    )


async def seed(session: AsyncSession, directory: Directory) -> None:
    # One flush per record so supervisors exist before their agents
    for name in SEED_ORDER:
        session.add(getattr(directory, name))
        await session.flush()
