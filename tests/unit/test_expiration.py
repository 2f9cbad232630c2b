"""Unit tests for values with an expiration deadline."""

from datetime import timedelta

import pytest

from persynx.gateway import expiration_key


@pytest.mark.unit
@pytest.mark.store
class TestExpiration:
    """set_with_expiration / get_with_expiration."""

    def test_value_is_readable_before_deadline(self, session, clock):
        session.set_with_expiration("otp", "123456", timedelta(minutes=5))
        clock.advance(60_000)

        assert session.get_with_expiration("otp") == "123456"

    def test_expired_value_is_evicted_with_its_record(self, session, clock):
        session.set_with_expiration("k", "v", 0.01)
        clock.advance(50)

        assert session.get_with_expiration("k") is None
        assert not session.has_key("k")
        assert not session.has_key(expiration_key("k"))

    def test_expired_value_returns_default(self, session, clock):
        session.set_with_expiration("k", "v", 1)
        clock.advance(1001)

        assert session.get_with_expiration("k", default="gone") == "gone"

    def test_deadline_is_stored_in_sibling_key(self, session, store, clock):
        session.set_with_expiration("k", "v", timedelta(seconds=2))

        assert session.get_expiration("k") == clock.now + 2000
        assert store.read("k_expiration")["data"] == clock.now + 2000

    def test_value_without_record_never_expires(self, session, clock):
        session.set("k", "v")
        clock.advance(10**9)

        assert session.get_expiration("k") is None
        assert session.get_with_expiration("k") == "v"

    def test_get_with_expiration_applies_decoder(self, session):
        session.set_with_expiration("n", "7", 60)
        assert session.get_with_expiration("n", int) == 7

    def test_remove_also_drops_expiration_record(self, session):
        session.set_with_expiration("k", "v", 60)

        session.remove("k")

        assert not session.has_key(expiration_key("k"))

    @pytest.mark.edge_case
    def test_malformed_record_is_ignored(self, session):
        session.set("k", "v")
        session.set(expiration_key("k"), "tomorrow")

        assert session.get_expiration("k") is None
        assert session.get_with_expiration("k") == "v"
