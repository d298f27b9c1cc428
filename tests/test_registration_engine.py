"""
Registration and waitlist engine tests
Capacity accounting, waitlist ordering, promotion and attendance
"""

import pytest
from uuid import uuid4
from sqlalchemy import select

from app.core.exceptions import (
    NotFoundError,
    BusinessRuleError,
    SessionClosedError,
    DuplicateRegistrationError,
    UserBannedError,
    RateLimitError,
)
from app.models.session import Session, SessionStatus
from app.models.registration import Registration, RegistrationStatus
from app.schemas.session import SessionUpdate
from app.services.email_service import NotificationKind


async def waitlist_positions(db_session, session_id):
    result = await db_session.execute(
        select(Registration.position)
        .where(
            Registration.session_id == session_id,
            Registration.status == RegistrationStatus.WAITLISTED,
            Registration.active()
        )
        .order_by(Registration.position)
    )
    return list(result.scalars().all())


async def fill_session(registration_service, db_session, session, users):
    return [
        await registration_service.create_registration(db_session, user.id, session.id)
        for user in users
    ]


@pytest.mark.asyncio
class TestCreateRegistration:
    """Creating registrations"""

    async def test_free_seat_registers_at_position_zero(
        self, db_session, registration_service, test_user, test_session
    ):
        registration = await registration_service.create_registration(
            db_session, test_user.id, test_session.id
        )

        assert registration.status == RegistrationStatus.REGISTERED
        assert registration.position == 0
        assert registration.has_attended is False
        assert test_session.spots_available == 3
        assert test_session.status == SessionStatus.OPEN

    async def test_last_seat_marks_session_full(
        self, db_session, registration_service, make_user, make_session
    ):
        session = await make_session(spots_total=2)
        users = [await make_user() for _ in range(2)]

        await fill_session(registration_service, db_session, session, users)

        assert session.spots_available == 0
        assert session.status == SessionStatus.FULL

    async def test_no_seat_appends_to_waitlist(
        self, db_session, registration_service, make_user, make_session, notifier
    ):
        session = await make_session(spots_total=1)
        users = [await make_user() for _ in range(4)]

        registrations = await fill_session(registration_service, db_session, session, users)

        assert registrations[0].status == RegistrationStatus.REGISTERED
        assert [r.status for r in registrations[1:]] == [RegistrationStatus.WAITLISTED] * 3
        assert [r.position for r in registrations[1:]] == [1, 2, 3]
        assert session.spots_available == 0
        assert await waitlist_positions(db_session, session.id) == [1, 2, 3]

        # One "added" notification per waitlisted user
        kinds = [call.args[0] for call in notifier.notify.await_args_list]
        assert kinds == [NotificationKind.ADDED] * 3
        assert notifier.notify.await_args_list[0].args[1] == [users[1].email]
        assert notifier.notify.await_args_list[0].args[2]["position"] == 1

    async def test_waitlist_on_full_session_with_zero_spots(
        self, db_session, registration_service, test_user, make_session
    ):
        session = await make_session(spots_total=3, spots_available=0, status=SessionStatus.FULL)

        registration = await registration_service.create_registration(db_session, test_user.id, session.id)

        assert registration.status == RegistrationStatus.WAITLISTED
        assert registration.position == 1
        assert session.spots_available == 0

    async def test_duplicate_registration_rejected(
        self, db_session, registration_service, test_user, test_session
    ):
        await registration_service.create_registration(db_session, test_user.id, test_session.id)

        with pytest.raises(DuplicateRegistrationError):
            await registration_service.create_registration(db_session, test_user.id, test_session.id)

        # The failed transaction rolled back and expired loaded rows
        await db_session.refresh(test_session)
        assert test_session.spots_available == 3

    async def test_can_register_again_after_cancelling(
        self, db_session, registration_service, test_user, test_session
    ):
        first = await registration_service.create_registration(db_session, test_user.id, test_session.id)
        await registration_service.cancel_registration(db_session, first.id)

        second = await registration_service.create_registration(db_session, test_user.id, test_session.id)

        assert second.id != first.id
        assert second.status == RegistrationStatus.REGISTERED
        assert test_session.spots_available == 3

    @pytest.mark.parametrize("has_attended", [True, False])
    async def test_can_register_again_after_attendance_is_marked(
        self, db_session, registration_service, test_user, test_session, has_attended
    ):
        first = await registration_service.create_registration(db_session, test_user.id, test_session.id)
        await registration_service.mark_attendance(db_session, first.id, has_attended)

        second = await registration_service.create_registration(db_session, test_user.id, test_session.id)

        assert second.id != first.id
        assert second.status == RegistrationStatus.REGISTERED
        assert first.status == (
            RegistrationStatus.COMPLETED if has_attended else RegistrationStatus.NO_SHOW
        )

    @pytest.mark.parametrize("status", [SessionStatus.CLOSED, SessionStatus.VIEW_ONLY])
    async def test_closed_and_view_only_sessions_reject(
        self, db_session, registration_service, test_user, make_session, status
    ):
        session = await make_session(status=status, spots_available=0 if status == SessionStatus.CLOSED else None)
        session_id = session.id

        with pytest.raises(SessionClosedError):
            await registration_service.create_registration(db_session, test_user.id, session_id)

        existing = await db_session.scalar(
            select(Registration.id).where(Registration.session_id == session_id)
        )
        assert existing is None

    async def test_banned_user_rejected(
        self, db_session, registration_service, make_user, test_session
    ):
        banned = await make_user(is_banned=True)

        with pytest.raises(UserBannedError) as exc_info:
            await registration_service.create_registration(db_session, banned.id, test_session.id)

        assert exc_info.value.status_code == 403
        assert test_session.spots_available == 4

    async def test_unknown_user_and_session(
        self, db_session, registration_service, test_user, test_session
    ):
        with pytest.raises(NotFoundError):
            await registration_service.create_registration(db_session, uuid4(), test_session.id)

        with pytest.raises(NotFoundError):
            await registration_service.create_registration(db_session, test_user.id, uuid4())

    async def test_deleted_session_is_not_found(
        self, db_session, registration_service, session_service, test_user, test_session
    ):
        await session_service.delete_session(db_session, test_session.id)

        with pytest.raises(NotFoundError):
            await registration_service.create_registration(db_session, test_user.id, test_session.id)

    async def test_rate_limit(
        self, db_session, registration_service, test_user, test_session, kv_store, monkeypatch
    ):
        from app.config import settings
        monkeypatch.setattr(settings, "RATE_LIMIT_REGISTRATION_PER_MINUTE", 1)

        registration = await registration_service.create_registration(db_session, test_user.id, test_session.id)
        await registration_service.cancel_registration(db_session, registration.id)

        with pytest.raises(RateLimitError) as exc_info:
            await registration_service.create_registration(db_session, test_user.id, test_session.id)

        assert exc_info.value.status_code == 429
        assert kv_store.data[f"rate:registration:{test_user.id}"] == 2
        assert kv_store.ttls[f"rate:registration:{test_user.id}"] == 60


@pytest.mark.asyncio
class TestCancelRegistration:
    """Cancelling, promotion and compaction"""

    async def test_promotes_first_waitlisted(
        self, db_session, registration_service, make_user, make_session, notifier
    ):
        """2 seats, A registered with spots at 0, B and C waitlisted: cancelling A promotes B"""
        session = await make_session(spots_total=2, spots_available=1)
        a, b, c = [await make_user() for _ in range(3)]
        reg_a, reg_b, reg_c = await fill_session(registration_service, db_session, session, [a, b, c])
        assert session.spots_available == 0
        assert (reg_b.position, reg_c.position) == (1, 2)
        notifier.notify.reset_mock()

        cancelled = await registration_service.cancel_registration(db_session, reg_a.id)

        assert cancelled.status == RegistrationStatus.CANCELLED
        assert cancelled.deleted_at is not None
        assert cancelled.last_cancellation is not None
        assert reg_b.status == RegistrationStatus.REGISTERED
        assert reg_b.position == 0
        assert reg_c.status == RegistrationStatus.WAITLISTED
        assert reg_c.position == 1
        assert session.spots_available == 0
        notifier.notify.assert_awaited_once()
        kind, recipients, context = notifier.notify.await_args.args
        assert kind == NotificationKind.PROMOTED
        assert recipients == [b.email]
        assert context["session_id"] == str(session.id)

    async def test_empty_waitlist_frees_seat_and_reopens(
        self, db_session, registration_service, make_user, make_session, notifier
    ):
        session = await make_session(spots_total=1)
        user = await make_user()
        registration = await registration_service.create_registration(db_session, user.id, session.id)
        assert session.status == SessionStatus.FULL

        await registration_service.cancel_registration(db_session, registration.id)

        assert session.spots_available == 1
        assert session.status == SessionStatus.OPEN
        notifier.notify.assert_not_awaited()

    async def test_banned_waitlisted_users_are_skipped(
        self, db_session, registration_service, make_user, make_session
    ):
        session = await make_session(spots_total=1)
        a, b, c = [await make_user() for _ in range(3)]
        reg_a, reg_b, reg_c = await fill_session(registration_service, db_session, session, [a, b, c])
        b.is_banned = True
        await db_session.commit()

        await registration_service.cancel_registration(db_session, reg_a.id)

        assert reg_b.status == RegistrationStatus.WAITLISTED
        assert reg_b.position == 1
        assert reg_c.status == RegistrationStatus.REGISTERED
        assert reg_c.position == 0
        assert session.spots_available == 0
        assert await waitlist_positions(db_session, session.id) == [1]

    async def test_all_banned_waitlist_frees_seat(
        self, db_session, registration_service, make_user, make_session
    ):
        session = await make_session(spots_total=1)
        a, b = [await make_user() for _ in range(2)]
        reg_a, reg_b = await fill_session(registration_service, db_session, session, [a, b])
        b.is_banned = True
        await db_session.commit()

        await registration_service.cancel_registration(db_session, reg_a.id)

        assert reg_b.status == RegistrationStatus.WAITLISTED
        assert session.spots_available == 1
        assert session.status == SessionStatus.OPEN

    async def test_cancel_waitlisted_compacts_positions(
        self, db_session, registration_service, make_user, make_session
    ):
        session = await make_session(spots_total=1)
        users = [await make_user() for _ in range(5)]
        registrations = await fill_session(registration_service, db_session, session, users)

        await registration_service.cancel_registration(db_session, registrations[2].id)

        assert session.spots_available == 0
        assert registrations[1].position == 1
        assert registrations[3].position == 2
        assert registrations[4].position == 3
        assert await waitlist_positions(db_session, session.id) == [1, 2, 3]

    async def test_second_cancel_is_not_found_and_changes_nothing(
        self, db_session, registration_service, make_user, make_session
    ):
        session = await make_session(spots_total=2)
        a, b = [await make_user() for _ in range(2)]
        reg_a, _ = await fill_session(registration_service, db_session, session, [a, b])

        await registration_service.cancel_registration(db_session, reg_a.id)
        reg_a_id = reg_a.id
        await db_session.refresh(reg_a)
        spots_after_first = session.spots_available
        cancelled_at = reg_a.last_cancellation

        with pytest.raises(NotFoundError):
            await registration_service.cancel_registration(db_session, reg_a_id)

        await db_session.refresh(session)
        await db_session.refresh(reg_a)
        assert session.spots_available == spots_after_first == 1
        assert reg_a.last_cancellation == cancelled_at

    async def test_completed_registration_cannot_be_cancelled(
        self, db_session, registration_service, test_user, test_session
    ):
        registration = await registration_service.create_registration(db_session, test_user.id, test_session.id)
        await registration_service.mark_attendance(db_session, registration.id, True)

        with pytest.raises(BusinessRuleError):
            await registration_service.cancel_registration(db_session, registration.id)

    async def test_closed_session_still_promotes_waitlist(
        self, db_session, registration_service, session_service, make_user, make_session, notifier
    ):
        session = await make_session(spots_total=1)
        a, b = [await make_user() for _ in range(2)]
        reg_a, reg_b = await fill_session(registration_service, db_session, session, [a, b])
        await session_service.update_session(db_session, session.id, SessionUpdate(status=SessionStatus.CLOSED))

        await registration_service.cancel_registration(db_session, reg_a.id)

        assert reg_b.status == RegistrationStatus.REGISTERED
        assert reg_b.position == 0
        assert session.status == SessionStatus.CLOSED
        assert session.spots_available == 0
        assert await waitlist_positions(db_session, session.id) == []
        assert notifier.notify.await_args.args[0] == NotificationKind.PROMOTED

    async def test_closed_session_without_waitlist_keeps_zero_spots(
        self, db_session, registration_service, session_service, test_user, test_session
    ):
        registration = await registration_service.create_registration(db_session, test_user.id, test_session.id)
        await session_service.archive_session(db_session, test_session.id)

        await registration_service.cancel_registration(db_session, registration.id)

        assert test_session.status == SessionStatus.CLOSED
        assert test_session.spots_available == 0

    async def test_view_only_session_reopens_when_seat_frees(
        self, db_session, registration_service, test_user, make_session
    ):
        session = await make_session(spots_total=2, spots_available=1, status=SessionStatus.VIEW_ONLY)
        # View-only sessions refuse new registrations, so seat the member directly
        seat = Registration(user_id=test_user.id, session_id=session.id)
        db_session.add(seat)
        await db_session.commit()

        await registration_service.cancel_registration(db_session, seat.id)

        assert session.spots_available == 2
        assert session.status == SessionStatus.OPEN

    async def test_notifier_failure_does_not_undo_promotion(
        self, db_session, registration_service, make_user, make_session, notifier
    ):
        session = await make_session(spots_total=1)
        a, b = [await make_user() for _ in range(2)]
        reg_a, reg_b = await fill_session(registration_service, db_session, session, [a, b])
        notifier.notify.side_effect = RuntimeError("smtp down")

        await registration_service.cancel_registration(db_session, reg_a.id)

        db_session.expunge_all()
        promoted = await db_session.get(Registration, reg_b.id)
        assert promoted.status == RegistrationStatus.REGISTERED
        assert promoted.position == 0


@pytest.mark.asyncio
class TestCapacityInvariants:
    """Serial create/cancel sequences keep the counters consistent"""

    async def test_spots_and_positions_stay_consistent(
        self, db_session, registration_service, make_user, make_session
    ):
        session = await make_session(spots_total=3)
        users = [await make_user() for _ in range(7)]
        registrations = {}

        async def check():
            refreshed = await db_session.get(Session, session.id)
            assert 0 <= refreshed.spots_available <= refreshed.spots_total
            positions = await waitlist_positions(db_session, session.id)
            assert positions == list(range(1, len(positions) + 1))
            seated = await db_session.scalar(
                select(Registration.id).where(
                    Registration.session_id == session.id,
                    Registration.status == RegistrationStatus.REGISTERED,
                    Registration.active()
                ).limit(1)
            )
            if positions:
                assert refreshed.spots_available == 0
                assert seated is not None

        for user in users:
            registrations[user.id] = await registration_service.create_registration(
                db_session, user.id, session.id
            )
            await check()

        # Cancel seated and waitlisted rows in an interleaved order
        for index in (0, 4, 1, 6, 2, 3, 5):
            await registration_service.cancel_registration(db_session, registrations[users[index].id].id)
            await check()

        assert session.spots_available == 3
        assert session.status == SessionStatus.OPEN


@pytest.mark.asyncio
class TestMarkAttendance:
    """Attendance marking and no-show accounting"""

    async def test_attended_marks_completed(
        self, db_session, registration_service, test_user, test_session
    ):
        registration = await registration_service.create_registration(db_session, test_user.id, test_session.id)

        marked = await registration_service.mark_attendance(db_session, registration.id, True)

        assert marked.status == RegistrationStatus.COMPLETED
        assert marked.has_attended is True
        assert test_user.no_show_count == 0

    async def test_no_show_count_is_recalculated(
        self, db_session, registration_service, test_user, make_session
    ):
        first = await make_session(name="Monday Drills")
        second = await make_session(name="Tuesday Drills")
        reg_1 = await registration_service.create_registration(db_session, test_user.id, first.id)
        reg_2 = await registration_service.create_registration(db_session, test_user.id, second.id)

        # Counter drifted from the rows, e.g. edited by hand
        test_user.no_show_count = 7
        await db_session.commit()

        await registration_service.mark_attendance(db_session, reg_1.id, False)
        assert test_user.no_show_count == 1

        await registration_service.mark_attendance(db_session, reg_2.id, False)
        assert test_user.no_show_count == 2
        assert reg_2.status == RegistrationStatus.NO_SHOW

    async def test_remarking_as_attended_lowers_count(
        self, db_session, registration_service, test_user, test_session
    ):
        registration = await registration_service.create_registration(db_session, test_user.id, test_session.id)
        await registration_service.mark_attendance(db_session, registration.id, False)
        assert test_user.no_show_count == 1

        await registration_service.mark_attendance(db_session, registration.id, True)

        assert test_user.no_show_count == 0

    async def test_waitlisted_registration_rejected(
        self, db_session, registration_service, make_user, make_session
    ):
        session = await make_session(spots_total=1)
        a, b = [await make_user() for _ in range(2)]
        _, reg_b = await fill_session(registration_service, db_session, session, [a, b])

        with pytest.raises(BusinessRuleError):
            await registration_service.mark_attendance(db_session, reg_b.id, True)

    async def test_unknown_registration(self, db_session, registration_service):
        with pytest.raises(NotFoundError):
            await registration_service.mark_attendance(db_session, uuid4(), False)


@pytest.mark.asyncio
class TestRegistrationQueries:
    """Read side of the engine"""

    async def test_confirmed_and_waitlist_listings(
        self, db_session, registration_service, make_user, make_session
    ):
        session = await make_session(spots_total=2)
        users = [await make_user() for _ in range(4)]
        await fill_session(registration_service, db_session, session, users)

        confirmed = await registration_service.get_session_registrations(db_session, session.id)
        waitlist = await registration_service.get_session_waitlist(db_session, session.id)

        assert {r.user_id for r in confirmed} == {users[0].id, users[1].id}
        assert [r.user_id for r in waitlist] == [users[2].id, users[3].id]
        assert [r.position for r in waitlist] == [1, 2]

        formatted = registration_service.format_registration(waitlist[0])
        assert formatted["user"]["email"] == users[2].email

    async def test_listing_unknown_session(self, db_session, registration_service):
        with pytest.raises(NotFoundError):
            await registration_service.get_session_waitlist(db_session, uuid4())

    async def test_user_history_includes_cancellations(
        self, db_session, registration_service, test_user, make_session
    ):
        from app.schemas.registration import RegistrationHistoryQuery

        kept = await make_session(name="Kept")
        dropped = await make_session(name="Dropped")
        await registration_service.create_registration(db_session, test_user.id, kept.id)
        registration = await registration_service.create_registration(db_session, test_user.id, dropped.id)
        await registration_service.cancel_registration(db_session, registration.id)

        history = await registration_service.get_user_history(db_session, test_user.id)
        assert len(history) == 2

        cancelled_only = await registration_service.get_user_history(
            db_session,
            test_user.id,
            RegistrationHistoryQuery(status=[RegistrationStatus.CANCELLED], include_session=True)
        )
        assert [r.id for r in cancelled_only] == [registration.id]
        assert registration_service.format_registration(cancelled_only[0])["session"].name == "Dropped"

        assert await registration_service.count_recent_cancellations(db_session, test_user.id) == 1
