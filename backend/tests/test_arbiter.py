"""Service-level tests for the capacity ledger, arbiter and promotion policy.

Covers:
- Capacity invariant under concurrent joins (thread pool, one session each)
- Mixed concurrent joins and leaves
- Compare-and-set retry when a racing writer commits first
- Bounded retry: ConcurrencyConflict after RSVP_MAX_ATTEMPTS
- Per-event locks are dropped once nobody holds them
- Notification failures never undo a committed RSVP
- Ledger and promotion edge cases
"""
import gc
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone, timedelta

import pytest

from pulse.errors import CollaboratorUnavailable, ConcurrencyConflict, NotFound
from pulse.models.event import Event, EventStatus
from pulse.models.rsvp import EventRSVP, RSVPStatus
from pulse.models.user import User
from pulse.services import capacity_ledger, event_service, promotion_policy, rsvp_arbiter
from pulse.services.notifications import NullNotifier


def _user(db, email: str) -> User:
    user = User(email=email, domain=email.split("@")[1], display_name=email.split("@")[0])
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def _event(db, creator: User, capacity=None) -> Event:
    start = datetime.now(timezone.utc) + timedelta(days=1)
    return event_service.create_event(
        db, creator.user_id, creator.domain, "Offsite", start, start + timedelta(hours=2), capacity=capacity,
    )


class FailingNotifier:
    def __init__(self, exc):
        self.exc = exc
        self.attempts = 0

    def send(self, notification):
        self.attempts += 1
        raise self.exc


class TestCapacityLedger:
    def test_unknown_event_counts_zero(self, db):
        counts = capacity_ledger.count_confirmed(db, "no-such-event")
        assert counts == capacity_ledger.CapacityCount(confirmed=0, waitlist=0)

    def test_cancelled_rows_not_counted(self, db):
        host = _user(db, "host@google.com")
        event = _event(db, host, capacity=1)
        a, b, c = (_user(db, f"{n}@google.com") for n in ("a", "b", "c"))
        for u in (a, b, c):
            rsvp_arbiter.request_join(db, event.event_id, u.user_id, NullNotifier())
        rsvp_arbiter.request_leave(db, event.event_id, c.user_id, NullNotifier())

        assert capacity_ledger.count_confirmed(db, event.event_id) == capacity_ledger.CapacityCount(1, 1)

    def test_count_many(self, db):
        host = _user(db, "host@google.com")
        e1, e2 = _event(db, host, capacity=1), _event(db, host)
        a = _user(db, "a@google.com")
        rsvp_arbiter.request_join(db, e1.event_id, a.user_id, NullNotifier())
        rsvp_arbiter.request_join(db, e2.event_id, a.user_id, NullNotifier())
        rsvp_arbiter.request_join(db, e1.event_id, host.user_id, NullNotifier())

        counts = capacity_ledger.count_many(db, [e1.event_id, e2.event_id])
        assert counts[e1.event_id].confirmed == 1
        assert counts[e1.event_id].waitlist == 1
        assert counts[e2.event_id].confirmed == 1
        assert capacity_ledger.count_many(db, []) == {}


class TestConcurrency:
    def test_concurrent_joins_never_overshoot(self, db, session_factory):
        """Capacity 1, ten simultaneous joins → exactly one yes, nine waitlist."""
        host = _user(db, "host@google.com")
        event = _event(db, host, capacity=1)
        users = [_user(db, f"racer{i}@google.com") for i in range(10)]
        barrier = threading.Barrier(len(users))

        def attempt(user_id):
            session = session_factory()
            try:
                barrier.wait()
                return rsvp_arbiter.request_join(session, event.event_id, user_id, NullNotifier()).status
            finally:
                session.close()

        with ThreadPoolExecutor(max_workers=len(users)) as pool:
            results = list(pool.map(attempt, [u.user_id for u in users]))

        assert results.count(RSVPStatus.yes) == 1
        assert results.count(RSVPStatus.waitlist) == 9
        assert capacity_ledger.count_confirmed(db, event.event_id).confirmed == 1

    def test_concurrent_joins_and_leaves_respect_capacity(self, db, session_factory):
        host = _user(db, "host@google.com")
        event = _event(db, host, capacity=3)
        early = [_user(db, f"early{i}@google.com") for i in range(5)]
        for u in early:
            rsvp_arbiter.request_join(db, event.event_id, u.user_id, NullNotifier())
        late = [_user(db, f"late{i}@google.com") for i in range(6)]

        jobs = [("leave", u.user_id) for u in early[:3]] + [("join", u.user_id) for u in late]
        barrier = threading.Barrier(len(jobs))

        def run(job):
            action, user_id = job
            session = session_factory()
            try:
                barrier.wait()
                fn = rsvp_arbiter.request_join if action == "join" else rsvp_arbiter.request_leave
                fn(session, event.event_id, user_id, NullNotifier())
            finally:
                session.close()

        with ThreadPoolExecutor(max_workers=len(jobs)) as pool:
            list(pool.map(run, jobs))

        db.expire_all()
        counts = capacity_ledger.count_confirmed(db, event.event_id)
        assert counts.confirmed == 3
        assert counts.confirmed + counts.waitlist == 2 + 6

    def test_racing_writer_forces_recheck(self, db, session_factory, monkeypatch):
        """A rival commits the last seat between our count and our commit → we end up waitlisted."""
        host = _user(db, "host@google.com")
        event = _event(db, host, capacity=1)
        rival, me = _user(db, "rival@google.com"), _user(db, "me@google.com")

        real_claim = rsvp_arbiter._claim_rsvp_version
        calls = []

        def racing_claim(session, event_id, seen_version):
            calls.append(seen_version)
            if len(calls) == 1:
                other = session_factory()
                try:
                    rsvp_arbiter.request_join(other, event_id, rival.user_id, NullNotifier())
                finally:
                    other.close()
            return real_claim(session, event_id, seen_version)

        monkeypatch.setattr(rsvp_arbiter, "_claim_rsvp_version", racing_claim)

        outcome = rsvp_arbiter.request_join(db, event.event_id, me.user_id, NullNotifier())
        assert outcome.status == RSVPStatus.waitlist
        assert len(calls) == 3  # ours, the rival's, our retry
        assert capacity_ledger.count_confirmed(db, event.event_id).confirmed == 1

    def test_retries_are_bounded(self, db, monkeypatch):
        host = _user(db, "host@google.com")
        event = _event(db, host, capacity=5)
        me = _user(db, "me@google.com")
        calls = []

        def always_lose(session, event_id, seen_version):
            calls.append(seen_version)
            return False

        monkeypatch.setattr(rsvp_arbiter, "_claim_rsvp_version", always_lose)

        with pytest.raises(ConcurrencyConflict) as excinfo:
            rsvp_arbiter.request_join(db, event.event_id, me.user_id, NullNotifier())
        assert excinfo.value.status_code == 503
        assert excinfo.value.attempts == 3
        assert len(calls) == 3
        assert db.query(EventRSVP).count() == 0

    def test_lock_registry_releases_unused_locks(self, db):
        me = _user(db, "me@google.com")
        for i in range(200):
            rsvp_arbiter.request_leave(db, f"bogus-{i}", me.user_id, NullNotifier())
        gc.collect()
        assert not [k for k in list(rsvp_arbiter._event_locks.keys()) if k.startswith("bogus-")]

    def test_nested_lock_is_shared_while_held(self):
        with rsvp_arbiter.event_lock("evt-1"):
            outer = rsvp_arbiter._event_locks["evt-1"]
            with rsvp_arbiter.event_lock("evt-1"):
                assert rsvp_arbiter._event_locks["evt-1"] is outer


class TestArbiter:
    def test_unknown_event_not_found(self, db):
        me = _user(db, "me@google.com")
        with pytest.raises(NotFound):
            rsvp_arbiter.request_join(db, "missing", me.user_id, NullNotifier())

    def test_capacity_is_reread_each_time(self, db):
        host = _user(db, "host@google.com")
        event = _event(db, host, capacity=1)
        a, b = _user(db, "a@google.com"), _user(db, "b@google.com")
        rsvp_arbiter.request_join(db, event.event_id, a.user_id, NullNotifier())

        # Capacity changed behind the session's back
        db.query(Event).filter(Event.event_id == event.event_id).update({Event.capacity: 2})
        db.commit()

        assert rsvp_arbiter.request_join(db, event.event_id, b.user_id, NullNotifier()).status == RSVPStatus.yes

    def test_notification_failure_does_not_roll_back(self, db):
        host = _user(db, "host@google.com")
        event = _event(db, host, capacity=1)
        me = _user(db, "me@google.com")
        failing = FailingNotifier(CollaboratorUnavailable("smtp down"))

        outcome = rsvp_arbiter.request_join(db, event.event_id, me.user_id, failing)
        assert outcome.status == RSVPStatus.yes
        assert failing.attempts == 1
        assert rsvp_arbiter.current_status(db, event.event_id, me.user_id) == RSVPStatus.yes

    def test_unexpected_notifier_error_is_isolated(self, db):
        host = _user(db, "host@google.com")
        event = _event(db, host)
        me = _user(db, "me@google.com")
        outcome = rsvp_arbiter.request_join(db, event.event_id, me.user_id, FailingNotifier(RuntimeError("boom")))
        assert outcome.status == RSVPStatus.yes

    def test_waitlisted_user_keeps_place_on_rejoin(self, db):
        host = _user(db, "host@google.com")
        event = _event(db, host, capacity=1)
        a, b, c = (_user(db, f"{n}@google.com") for n in ("a", "b", "c"))
        for u in (a, b, c):
            rsvp_arbiter.request_join(db, event.event_id, u.user_id, NullNotifier())

        # b asks again while still full; must not lose its spot to c
        rsvp_arbiter.request_join(db, event.event_id, b.user_id, NullNotifier())
        outcome = rsvp_arbiter.request_leave(db, event.event_id, a.user_id, NullNotifier())
        assert outcome.promoted_user_ids == [b.user_id]


class TestPromotionPolicy:
    def test_nothing_to_promote(self, db):
        host = _user(db, "host@google.com")
        event = _event(db, host, capacity=2)
        assert promotion_policy.promote_if_room_available(db, event.event_id) is None

    def test_full_event_promotes_nobody(self, db):
        host = _user(db, "host@google.com")
        event = _event(db, host, capacity=1)
        a, b = _user(db, "a@google.com"), _user(db, "b@google.com")
        rsvp_arbiter.request_join(db, event.event_id, a.user_id, NullNotifier())
        rsvp_arbiter.request_join(db, event.event_id, b.user_id, NullNotifier())
        assert promotion_policy.promote_if_room_available(db, event.event_id) is None

    def test_no_promotion_on_inactive_event(self, db):
        host = _user(db, "host@google.com")
        event = _event(db, host, capacity=1)
        a, b = _user(db, "a@google.com"), _user(db, "b@google.com")
        rsvp_arbiter.request_join(db, event.event_id, a.user_id, NullNotifier())
        rsvp_arbiter.request_join(db, event.event_id, b.user_id, NullNotifier())

        db.query(Event).filter(Event.event_id == event.event_id).update({Event.status: EventStatus.hidden})
        db.commit()

        outcome = rsvp_arbiter.request_leave(db, event.event_id, a.user_id, NullNotifier())
        assert outcome.status == RSVPStatus.cancelled
        assert outcome.promoted_user_ids == []
        assert rsvp_arbiter.current_status(db, event.event_id, b.user_id) == RSVPStatus.waitlist

    def test_fill_open_seats_promotes_in_order(self, db):
        host = _user(db, "host@google.com")
        event = _event(db, host, capacity=1)
        users = [_user(db, f"u{i}@google.com") for i in range(4)]
        for u in users:
            rsvp_arbiter.request_join(db, event.event_id, u.user_id, NullNotifier())

        db.query(Event).filter(Event.event_id == event.event_id).update({Event.capacity: 3})
        promoted = promotion_policy.fill_open_seats(db, event.event_id)
        db.commit()

        assert promoted == [users[1].user_id, users[2].user_id]
        assert capacity_ledger.count_confirmed(db, event.event_id) == capacity_ledger.CapacityCount(3, 1)
