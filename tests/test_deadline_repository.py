import asyncio
from datetime import timedelta

from helpers import NOW, seed_deadline, seed_receipt, sqlite_db
from packages.common.deadline_repository import DeadlineRepository
from packages.common.exceptions import DeadlineNotFound, DeadlineStateConflict
from packages.common.schemas.deadlines import (
    DeadlineDecision,
    DeadlineStatus,
    Milestone,
)

LEASE = timedelta(minutes=15)


def test_find_due_joins_receipt_and_profile(db_path):
    async def scenario():
        async with sqlite_db(db_path) as db:
            receipt_id = await seed_receipt(db, merchant="Target", total_cents=2599)
            due_id = await seed_deadline(db, receipt_id, NOW + timedelta(hours=3))
            await seed_deadline(db, receipt_id, NOW + timedelta(days=2))
            await seed_deadline(db, receipt_id, NOW + timedelta(hours=1), status="closed")

            repo = DeadlineRepository(db)
            start = NOW.replace(hour=0, minute=0)
            return due_id, await repo.find_due(Milestone.DUE_TODAY, start, start + timedelta(days=1))

    due_id, notices = asyncio.run(scenario())

    assert [n.deadline_id for n in notices] == [due_id]
    notice = notices[0]
    assert notice.merchant == "Target"
    assert notice.total_cents == 2599
    assert notice.email == "shopper@example.com"
    assert notice.due_at == NOW + timedelta(hours=3)
    assert notice.due_at.tzinfo is not None


def test_missing_profile_gives_no_email(db_path):
    async def scenario():
        async with sqlite_db(db_path) as db:
            receipt_id = await seed_receipt(db, user_id="no-profile", email=None)
            await seed_deadline(db, receipt_id, NOW, user_id="no-profile")
            start = NOW.replace(hour=0, minute=0)
            return await DeadlineRepository(db).find_due(Milestone.DUE_TODAY, start, start + timedelta(days=1))

    notices = asyncio.run(scenario())
    assert len(notices) == 1
    assert notices[0].email is None


def test_claim_is_exclusive_until_lease_expires(db_path):
    async def scenario():
        async with sqlite_db(db_path) as db:
            receipt_id = await seed_receipt(db)
            deadline_id = await seed_deadline(db, receipt_id, NOW)
            repo = DeadlineRepository(db)

            first = await repo.claim(deadline_id, Milestone.DUE_TODAY, NOW, LEASE)
            second = await repo.claim(deadline_id, Milestone.DUE_TODAY, NOW + timedelta(minutes=1), LEASE)
            other_milestone = await repo.claim(deadline_id, Milestone.HEADS_UP, NOW, LEASE)
            after_lease = await repo.claim(deadline_id, Milestone.DUE_TODAY, NOW + timedelta(minutes=16), LEASE)
            return first, second, other_milestone, after_lease

    assert asyncio.run(scenario()) == (True, False, True, True)


def test_concurrent_claims_have_one_winner(db_path):
    async def scenario():
        async with sqlite_db(db_path) as db:
            receipt_id = await seed_receipt(db)
            deadline_id = await seed_deadline(db, receipt_id, NOW)
            repo = DeadlineRepository(db)
            return await asyncio.gather(*[
                repo.claim(deadline_id, Milestone.DUE_TODAY, NOW, LEASE) for _ in range(5)
            ])

    assert sorted(asyncio.run(scenario())) == [False, False, False, False, True]


def test_confirm_sets_gate_once_and_blocks_claims(db_path):
    async def scenario():
        async with sqlite_db(db_path) as db:
            receipt_id = await seed_receipt(db)
            deadline_id = await seed_deadline(db, receipt_id, NOW)
            repo = DeadlineRepository(db)

            await repo.claim(deadline_id, Milestone.DUE_TODAY, NOW, LEASE)
            confirmed = await repo.confirm_sent(deadline_id, Milestone.DUE_TODAY, NOW)
            again = await repo.confirm_sent(deadline_id, Milestone.DUE_TODAY, NOW + timedelta(hours=1))
            reclaim = await repo.claim(deadline_id, Milestone.DUE_TODAY, NOW + timedelta(days=1), LEASE)
            return confirmed, again, reclaim, await repo.get(deadline_id)

    confirmed, again, reclaim, deadline = asyncio.run(scenario())

    assert (confirmed, again, reclaim) == (True, False, False)
    assert deadline.due_today_notified_at == NOW
    assert deadline.heads_up_notified_at is None
    assert deadline.status == DeadlineStatus.OPEN


def test_release_only_drops_our_own_claim(db_path):
    async def scenario():
        async with sqlite_db(db_path) as db:
            receipt_id = await seed_receipt(db)
            deadline_id = await seed_deadline(db, receipt_id, NOW)
            repo = DeadlineRepository(db)

            await repo.claim(deadline_id, Milestone.DUE_TODAY, NOW, LEASE)
            stale = await repo.release_claim(deadline_id, Milestone.DUE_TODAY, NOW - timedelta(minutes=1))
            released = await repo.release_claim(deadline_id, Milestone.DUE_TODAY, NOW)
            reclaimed = await repo.claim(deadline_id, Milestone.DUE_TODAY, NOW + timedelta(seconds=1), LEASE)
            return stale, released, reclaimed

    assert asyncio.run(scenario()) == (False, True, True)


def test_decision_closes_and_reopen_clears_gates(db_path):
    async def scenario():
        async with sqlite_db(db_path) as db:
            receipt_id = await seed_receipt(db)
            deadline_id = await seed_deadline(db, receipt_id, NOW)
            repo = DeadlineRepository(db)

            await repo.claim(deadline_id, Milestone.HEADS_UP, NOW, LEASE)
            await repo.confirm_sent(deadline_id, Milestone.HEADS_UP, NOW)
            closed = await repo.record_decision(deadline_id, "user-1", DeadlineDecision.KEEP, "gift", NOW)
            blocked = await repo.claim(deadline_id, Milestone.DUE_TODAY, NOW, LEASE)
            reopened = await repo.reopen(deadline_id, "user-1")
            return closed, blocked, reopened

    closed, blocked, reopened = asyncio.run(scenario())

    assert closed.status == DeadlineStatus.CLOSED
    assert closed.decision == DeadlineDecision.KEEP
    assert closed.decision_note == "gift"
    assert closed.closed_at == NOW
    assert closed.heads_up_notified_at == NOW
    assert blocked is False

    assert reopened.status == DeadlineStatus.OPEN
    assert reopened.decision is None
    assert reopened.decision_note is None
    assert reopened.closed_at is None
    assert reopened.heads_up_notified_at is None
    assert reopened.due_today_notified_at is None


def test_decision_errors(db_path):
    async def scenario():
        async with sqlite_db(db_path) as db:
            receipt_id = await seed_receipt(db)
            deadline_id = await seed_deadline(db, receipt_id, NOW)
            repo = DeadlineRepository(db)
            await repo.record_decision(deadline_id, "user-1", DeadlineDecision.RETURN, None, NOW)

            errors = []
            for call in (
                repo.record_decision(deadline_id, "user-1", DeadlineDecision.KEEP, None, NOW),
                repo.record_decision(deadline_id, "someone-else", DeadlineDecision.KEEP, None, NOW),
                repo.record_decision("missing", "user-1", DeadlineDecision.KEEP, None, NOW),
            ):
                try:
                    await call
                except Exception as e:
                    errors.append(type(e))

            await repo.reopen(deadline_id, "user-1")
            try:
                await repo.reopen(deadline_id, "user-1")
            except DeadlineStateConflict as e:
                errors.append(e.status)
            return errors

    assert asyncio.run(scenario()) == [DeadlineStateConflict, DeadlineNotFound, DeadlineNotFound, "open"]


def test_list_for_user(db_path):
    async def scenario():
        async with sqlite_db(db_path) as db:
            receipt_id = await seed_receipt(db)
            later = await seed_deadline(db, receipt_id, NOW + timedelta(days=10))
            sooner = await seed_deadline(db, receipt_id, NOW + timedelta(days=1), type="price_adjust")
            closed = await seed_deadline(db, receipt_id, NOW + timedelta(days=5), status="closed")
            other = await seed_receipt(db, user_id="user-2")
            await seed_deadline(db, other, NOW, user_id="user-2")

            repo = DeadlineRepository(db)
            return (
                [d.id for d in await repo.list_for_user("user-1")],
                [d.id for d in await repo.list_for_user("user-1", status=DeadlineStatus.OPEN)],
                (sooner, closed, later),
            )

    all_ids, open_ids, (sooner, closed, later) = asyncio.run(scenario())

    assert all_ids == [sooner, closed, later]
    assert open_ids == [sooner, later]


def test_create_many_and_independent_milestone_gates(db_path):
    async def scenario():
        async with sqlite_db(db_path) as db:
            receipt_id = await seed_receipt(db)
            repo = DeadlineRepository(db)
            created = await repo.create_many([
                {"id": "d-1", "user_id": "user-1", "receipt_id": receipt_id, "type": "return",
                 "due_at": NOW, "status": "open", "created_at": NOW},
            ])
            empty = await repo.create_many([])

            start, end = NOW - timedelta(days=1), NOW + timedelta(days=1)
            await repo.claim("d-1", Milestone.DUE_TODAY, NOW, LEASE)
            await repo.confirm_sent("d-1", Milestone.DUE_TODAY, NOW)
            return (
                created,
                empty,
                await repo.find_due(Milestone.DUE_TODAY, start, end),
                await repo.find_due(Milestone.HEADS_UP, start, end),
            )

    created, empty, due_today, heads_up = asyncio.run(scenario())

    assert (created, empty) == (1, 0)
    assert due_today == []
    assert [n.deadline_id for n in heads_up] == ["d-1"]


def test_count_for_user_tallies_open_and_decisions(db_path):
    async def scenario():
        async with sqlite_db(db_path) as db:
            receipt_id = await seed_receipt(db)
            repo = DeadlineRepository(db)
            await seed_deadline(db, receipt_id, NOW + timedelta(days=1))
            await seed_deadline(db, receipt_id, NOW + timedelta(days=2), type="price_adjust")
            kept = await seed_deadline(db, receipt_id, NOW + timedelta(days=3))
            returned = await seed_deadline(db, receipt_id, NOW + timedelta(days=4))
            await repo.record_decision(kept, "user-1", DeadlineDecision.KEEP, None, NOW)
            await repo.record_decision(returned, "user-1", DeadlineDecision.RETURN, None, NOW)
            other = await seed_receipt(db, user_id="user-2")
            await seed_deadline(db, other, NOW, user_id="user-2")

            return await repo.count_for_user("user-1"), await repo.count_for_user("nobody")

    counts, empty = asyncio.run(scenario())

    assert (counts.open, counts.kept, counts.returned) == (2, 1, 1)
    assert (empty.open, empty.kept, empty.returned) == (0, 0, 0)
