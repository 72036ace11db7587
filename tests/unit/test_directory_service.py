"""Unit tests for the authorization-aware directory service."""

import uuid

import pytest
from sqlalchemy import func, select

from src.kernel.directory.service import DirectoryService
from src.kernel.errors import AuditWriteError, ConflictError, ForbiddenError, NotFoundError, ValidationFailure
from src.kernel.models.audit_log import AuditAction, AuditLog
from src.kernel.models.user import User, UserRole, UserStatus
from src.schemas.directory import (
    BatchUpdateItem,
    DirectorySearch,
    ResetPasswordMode,
    UserCreate,
    UserUpdate,
)
from tests.factories import BrokenLedger


@pytest.fixture
def service(db_session, notifier):
    return DirectoryService(db_session, notifier=notifier)


async def denials(session):
    result = await session.execute(select(AuditLog).where(AuditLog.action == AuditAction.ACCESS_DENIED))
    return result.scalars().all()


def agent_payload(email="bob@example.com", **extra):
    return UserCreate(email=email, password="Sup3rSecret!", first_name="Bob", **extra)


@pytest.mark.asyncio
class TestUniformNotFound:
    """Out-of-scope targets look exactly like missing ones."""

    async def test_supervisor_cannot_see_foreign_agent(self, service, directory):
        principal = directory.principal("supervisor")
        with pytest.raises(NotFoundError) as out_of_scope:
            await service.get(principal, directory.foreign_agent.id)
        with pytest.raises(NotFoundError) as missing:
            await service.get(principal, uuid.uuid4())

        assert out_of_scope.value.code == missing.value.code
        assert out_of_scope.value.status_code == missing.value.status_code

    async def test_admin_cannot_touch_other_admin(self, db_session, service, directory):
        with pytest.raises(NotFoundError):
            await service.archive(directory.principal("admin"), directory.admin.id)
        # Invisible targets are not denials: nothing to record
        assert await denials(db_session) == []


@pytest.mark.asyncio
class TestOperationGuards:
    """Roles without an operation are refused and the refusal is recorded."""

    @pytest.mark.parametrize("name", ["own_agent", "client"])
    async def test_agents_and_clients_cannot_list(self, db_session, service, directory, name):
        with pytest.raises(ForbiddenError):
            await service.find_all(directory.principal(name), DirectorySearch())

        entries = await denials(db_session)
        assert len(entries) == 1
        assert entries[0].actor_id == getattr(directory, name).id
        assert entries[0].changes["operation"] == "list"

    async def test_supervisor_cannot_archive(self, db_session, service, directory):
        with pytest.raises(ForbiddenError):
            await service.archive(directory.principal("supervisor"), directory.own_agent.id)
        assert directory.own_agent.status == UserStatus.ACTIVE
        assert len(await denials(db_session)) == 1

    async def test_self_archive_is_forbidden(self, service, directory):
        with pytest.raises(ForbiddenError):
            await service.archive(directory.principal("super_admin"), directory.super_admin.id)

    async def test_include_deleted_ignored_for_supervisor(self, db_session, service, directory):
        await service.archive(directory.principal("admin"), directory.own_agent.id)
        page = await service.find_all(directory.principal("supervisor"), DirectorySearch(include_deleted=True))
        assert page.data == []

    async def test_batch_needs_admin(self, service, directory):
        with pytest.raises(ForbiddenError):
            await service.batch_archive(directory.principal("supervisor"), [directory.own_agent.id])


@pytest.mark.asyncio
class TestEscalation:
    """Nobody hands out a role above their grant."""

    async def test_admin_cannot_create_admin(self, db_session, service, directory):
        with pytest.raises(ForbiddenError):
            await service.create(directory.principal("admin"), agent_payload(role=UserRole.ADMIN))
        assert (await denials(db_session))[0].entity_id is None

    async def test_admin_cannot_promote_to_admin(self, service, directory):
        with pytest.raises(ForbiddenError):
            await service.update(
                directory.principal("admin"), directory.own_agent.id, UserUpdate(role=UserRole.ADMIN)
            )
        assert directory.own_agent.role == UserRole.AGENT

    async def test_supervisor_cannot_promote_agent(self, service, directory):
        with pytest.raises(ForbiddenError):
            await service.update(
                directory.principal("supervisor"), directory.own_agent.id, UserUpdate(role=UserRole.ADMIN)
            )
        assert directory.own_agent.role == UserRole.AGENT

    async def test_super_admin_can_mint_admin(self, service, directory):
        record = await service.create(directory.principal("super_admin"), agent_payload(role=UserRole.ADMIN))
        assert record.role == UserRole.ADMIN

    async def test_supervisor_changing_status_is_forbidden(self, service, directory):
        with pytest.raises(ForbiddenError):
            await service.update(
                directory.principal("supervisor"), directory.own_agent.id, UserUpdate(status=UserStatus.INACTIVE)
            )

    async def test_supervisor_can_edit_contact_fields(self, service, directory):
        record = await service.update(
            directory.principal("supervisor"), directory.own_agent.id, UserUpdate(phone="555-9999")
        )
        assert record.phone == "555-9999"


@pytest.mark.asyncio
class TestSupervisorCreate:
    """Supervisors manage assigned agents but never create records."""

    @pytest.mark.parametrize("role", [UserRole.AGENT, UserRole.CLIENT])
    async def test_supervisor_create_is_forbidden(self, db_session, service, directory, role):
        with pytest.raises(ForbiddenError):
            await service.create(directory.principal("supervisor"), agent_payload(role=role))

        entries = await denials(db_session)
        assert len(entries) == 1
        assert entries[0].actor_id == directory.supervisor.id
        assert entries[0].changes["operation"] == "create"

        page = await service.find_all(directory.principal("super_admin"), DirectorySearch(email="bob@"))
        assert page.data == []

    async def test_admin_assigns_new_agent_to_supervisor(self, service, directory):
        record = await service.create(
            directory.principal("admin"), agent_payload(supervisor_id=directory.supervisor.id)
        )
        assert record.supervisor_id == directory.supervisor.id

        page = await service.find_all(directory.principal("supervisor"), DirectorySearch())
        assert "bob@example.com" in {r.email for r in page.data}


@pytest.mark.asyncio
class TestWritesAndNotifications:
    """Successful writes notify the account holder."""

    async def test_create_sends_welcome(self, service, notifier, directory):
        await service.create(directory.principal("admin"), agent_payload())
        assert notifier.templates() == ["welcome"]
        assert notifier.sent[0].to == "bob@example.com"

    async def test_temp_reset_sends_password(self, service, notifier, directory):
        outcome = await service.reset_password(
            directory.principal("admin"), directory.own_agent.id, ResetPasswordMode.TEMP
        )
        assert notifier.sent[-1].template == "temporary_password"
        assert notifier.sent[-1].context["temporary_password"] == outcome.temporary_password

    async def test_link_reset_sends_link(self, service, notifier, directory):
        await service.reset_password(directory.principal("admin"), directory.own_agent.id, ResetPasswordMode.LINK)
        assert notifier.sent[-1].context["reset_url"].startswith("https://app.example.com/reset-password?token=")

    async def test_verification_messages(self, service, notifier, directory):
        message = await service.send_verification(directory.principal("admin"), directory.own_agent.id)
        assert "sent" in message
        assert notifier.templates() == ["verification"]

        await service.verify_email(directory.principal("admin"), directory.own_agent.id)
        message = await service.send_verification(directory.principal("admin"), directory.own_agent.id)
        assert "already verified" in message

    async def test_set_status_noop_conflicts(self, service, directory):
        with pytest.raises(ConflictError):
            await service.set_status(directory.principal("admin"), directory.own_agent.id, UserStatus.ACTIVE)


@pytest.mark.asyncio
class TestBatches:
    """Service-level batches go through the same guards per item."""

    async def test_batch_archive_mixes_outcomes(self, service, directory):
        ids = [directory.own_agent.id, directory.admin.id, uuid.uuid4(), directory.client.id]
        outcome = await service.batch_archive(directory.principal("admin"), ids)

        assert outcome.success_count == 2
        assert {e.code for e in outcome.errors} == {"NOT_FOUND"}

    async def test_batch_update_reports_conflicts(self, service, directory):
        items = [
            BatchUpdateItem(id=directory.own_agent.id, data=UserUpdate(email="frank@example.com")),
            BatchUpdateItem(id=directory.client.id, data=UserUpdate(first_name="Caroline")),
        ]
        outcome = await service.batch_update(directory.principal("admin"), items)

        assert outcome.success_count == 1
        assert outcome.errors[0].key == str(directory.own_agent.id)
        assert outcome.errors[0].code == "CONFLICT"

    async def test_batch_create_keys_by_email(self, service, directory):
        outcome = await service.batch_create(
            directory.principal("admin"),
            [agent_payload("new1@example.com"), agent_payload("ALICE@example.com")],
        )
        assert outcome.success_count == 1
        assert outcome.errors[0].key == "alice@example.com"

    async def test_batch_assign_rejects_bad_supervisor_up_front(self, service, directory):
        with pytest.raises(ValidationFailure):
            await service.batch_assign_supervisor(
                directory.principal("admin"), [directory.own_agent.id], directory.client.id
            )

    async def test_batch_assign_supervisor(self, service, directory):
        outcome = await service.batch_assign_supervisor(
            directory.principal("admin"),
            [directory.own_agent.id, directory.foreign_agent.id],
            directory.supervisor.id,
        )
        assert outcome.success_count == 2
        assert directory.foreign_agent.supervisor_id == directory.supervisor.id


@pytest.mark.asyncio
class TestAuditReads:
    """Who may read which part of the trail."""

    async def test_admin_reads_entity_trail_in_scope(self, service, directory):
        await service.archive(directory.principal("admin"), directory.own_agent.id)
        entries = await service.entity_audit(directory.principal("admin"), "User", directory.own_agent.id)
        assert [e.action for e in entries] == [AuditAction.ARCHIVE]

    async def test_admin_cannot_read_admin_trail(self, service, directory):
        with pytest.raises(NotFoundError):
            await service.entity_audit(directory.principal("admin"), "User", directory.super_admin.id)

    async def test_global_trail_is_super_admin_only(self, service, directory):
        with pytest.raises(ForbiddenError):
            await service.recent_audit(directory.principal("admin"))
        assert await service.recent_audit(directory.principal("super_admin"))


@pytest.mark.asyncio
class TestAuditFailurePolicy:
    """A failing audit store either lets the write through or aborts it."""

    async def test_fail_open_keeps_the_business_write(self, db_session, notifier, directory):
        service = DirectoryService(db_session, ledger=BrokenLedger(db_session, fail_open=True), notifier=notifier)
        admin = directory.principal("admin")

        created = await service.create(admin, agent_payload(email="z@example.com"))
        archived = await service.archive(admin, directory.own_agent.id)
        updated = await service.update(admin, directory.client.id, UserUpdate(last_name="Changed"))

        assert archived.status == UserStatus.ARCHIVED
        assert updated.last_name == "Changed"
        stored = (await db_session.execute(select(User).where(User.email == "z@example.com"))).scalar_one()
        assert stored.id == created.id
        assert (await db_session.execute(select(func.count(AuditLog.id)))).scalar() == 0

    async def test_fail_closed_aborts_the_operation(self, db_session, notifier, directory):
        service = DirectoryService(db_session, ledger=BrokenLedger(db_session, fail_open=False), notifier=notifier)

        with pytest.raises(AuditWriteError):
            await service.create(directory.principal("admin"), agent_payload(email="z@example.com"))
        assert notifier.sent == []

        # the request transaction is rolled back on the way out
        await db_session.rollback()
        assert (await db_session.execute(select(User).where(User.email == "z@example.com"))).first() is None
