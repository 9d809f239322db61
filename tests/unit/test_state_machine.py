"""
Unit tests for ride status state machine validations and read-time status.
"""
from datetime import datetime, timedelta, timezone

from ridematch.models.ride import Ride
from ridematch.services.expiry import is_expired
from ridematch.services.lifecycle import effective_status, is_valid_transition

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_ride(status: str, **kwargs) -> Ride:
    fields = dict(
        id="ride-1",
        rider_id="rider-1",
        driver_id="driver-1",
        pickup_lat=32.08,
        pickup_lng=34.78,
        status=status,
        created_at=NOW - timedelta(seconds=30),
        expires_at=NOW + timedelta(seconds=90),
    )
    fields.update(kwargs)
    return Ride(**fields)


class TestRideStateMachine:
    def test_offered_to_consented(self):
        assert is_valid_transition("offered", "consented")

    def test_consented_to_enroute(self):
        assert is_valid_transition("consented", "enroute")

    def test_enroute_to_ontrip(self):
        assert is_valid_transition("enroute", "ontrip")

    def test_ontrip_to_completed(self):
        assert is_valid_transition("ontrip", "completed")

    def test_rider_can_decline_before_pickup(self):
        assert is_valid_transition("offered", "declined")
        assert is_valid_transition("consented", "declined")
        assert not is_valid_transition("ontrip", "declined")

    def test_completed_is_terminal(self):
        assert not is_valid_transition("completed", "offered")
        assert not is_valid_transition("completed", "ontrip")

    def test_expired_is_terminal(self):
        assert not is_valid_transition("expired", "consented")

    def test_invalid_forward_skip(self):
        # Cannot start before the driver accepted
        assert not is_valid_transition("offered", "ontrip")
        assert not is_valid_transition("consented", "completed")

    def test_invalid_backward_skip(self):
        assert not is_valid_transition("ontrip", "offered")


class TestEffectiveStatus:
    def test_fresh_offer_stays_offered(self):
        assert effective_status(make_ride("offered"), NOW) == "offered"

    def test_offer_past_deadline_is_expired(self):
        ride = make_ride("offered", expires_at=NOW - timedelta(seconds=1))
        assert is_expired(ride, NOW)
        assert effective_status(ride, NOW) == "expired"

    def test_offer_at_deadline_is_not_expired(self):
        ride = make_ride("offered", expires_at=NOW)
        assert not is_expired(ride, NOW)

    def test_accepted_offer_never_expires(self):
        ride = make_ride(
            "consented",
            expires_at=NOW - timedelta(minutes=5),
            driver_accepted_at=NOW - timedelta(seconds=2),
        )
        assert not is_expired(ride, NOW)
        assert effective_status(ride, NOW) == "consented"

    def test_consent_is_automatic_after_grace(self):
        ride = make_ride("consented", driver_accepted_at=NOW - timedelta(seconds=11))
        assert effective_status(ride, NOW) == "enroute"

    def test_terminal_states_are_unchanged(self):
        for status in ("completed", "declined", "expired"):
            assert effective_status(make_ride(status, expires_at=NOW - timedelta(hours=1)), NOW) == status
