"""Unit tests for ride and pool state transitions (State Pattern)."""

from datetime import datetime, timedelta

import pytest

from src.domain.entities import Pool, Ride
from src.domain.enums import PoolStatus, RideStatus
from src.domain.errors import InvalidState


class TestRideStateMachine:
    def test_initial_status_is_pending(self):
        assert Ride().status == RideStatus.PENDING

    # ── Valid transitions ─────────────────────────────────────────

    def test_pending_to_pooled(self):
        ride = Ride(status=RideStatus.PENDING)
        ride.transition_to(RideStatus.POOLED)
        assert ride.status == RideStatus.POOLED

    def test_pending_to_cancelled(self):
        ride = Ride(status=RideStatus.PENDING)
        ride.transition_to(RideStatus.CANCELLED)
        assert ride.status == RideStatus.CANCELLED

    def test_pooled_back_to_pending(self):
        """A discarded pool returns its riders for re-matching."""
        ride = Ride(status=RideStatus.POOLED)
        ride.transition_to(RideStatus.PENDING)
        assert ride.status == RideStatus.PENDING

    def test_pooled_to_completed(self):
        ride = Ride(status=RideStatus.POOLED)
        ride.transition_to(RideStatus.COMPLETED)
        assert ride.status == RideStatus.COMPLETED

    # ── Invalid transitions ───────────────────────────────────────

    def test_pending_to_completed_fails(self):
        ride = Ride(id=7, status=RideStatus.PENDING)
        with pytest.raises(InvalidState) as exc_info:
            ride.transition_to(RideStatus.COMPLETED)
        assert exc_info.value.ride_id == 7

    @pytest.mark.parametrize("terminal", [RideStatus.CANCELLED, RideStatus.COMPLETED])
    def test_terminal_states_are_final(self, terminal):
        ride = Ride(status=terminal)
        assert ride.is_terminal
        for target in RideStatus:
            with pytest.raises(InvalidState):
                ride.transition_to(target)

    def test_cancelled_twice_fails(self):
        ride = Ride(status=RideStatus.PENDING)
        ride.transition_to(RideStatus.CANCELLED)
        with pytest.raises(InvalidState):
            ride.transition_to(RideStatus.CANCELLED)


class TestPoolStateMachine:
    def test_happy_path(self):
        pool = Pool()
        for status in (PoolStatus.CONFIRMED, PoolStatus.IN_PROGRESS, PoolStatus.COMPLETED):
            pool.transition_to(status)
        assert pool.status == PoolStatus.COMPLETED

    @pytest.mark.parametrize("source", [PoolStatus.FORMING, PoolStatus.CONFIRMED])
    def test_cancellable_before_departure(self, source):
        assert Pool(status=source).can_transition_to(PoolStatus.CANCELLED)

    def test_in_progress_cannot_cancel(self):
        with pytest.raises(InvalidState):
            Pool(status=PoolStatus.IN_PROGRESS).transition_to(PoolStatus.CANCELLED)

    def test_forming_cannot_skip_confirmation(self):
        assert not Pool().can_transition_to(PoolStatus.IN_PROGRESS)

    def test_completed_is_final(self):
        pool = Pool(status=PoolStatus.COMPLETED)
        assert not any(pool.can_transition_to(s) for s in PoolStatus)


class TestPoolExpiry:
    now = datetime(2026, 10, 19, 12, 0)

    def test_forming_past_deadline_is_expired(self):
        pool = Pool(expires_at=self.now - timedelta(minutes=1))
        assert pool.is_expired(self.now)

    def test_deadline_itself_counts_as_expired(self):
        assert Pool(expires_at=self.now).is_expired(self.now)

    def test_future_deadline_is_live(self):
        assert not Pool(expires_at=self.now + timedelta(minutes=1)).is_expired(self.now)

    def test_confirmed_pool_never_expires(self):
        pool = Pool(status=PoolStatus.CONFIRMED, expires_at=self.now - timedelta(hours=1))
        assert not pool.is_expired(self.now)
