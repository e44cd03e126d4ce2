"""Tests for lease events and the in-process event bus."""

import logging

import pytest

from rentflow.events import (
    Event,
    EventBus,
    EventHandlerError,
    LeaseActivated,
    LeaseCreated,
    LeaseSigned,
    LeaseStatusChanged,
    get_event_bus,
    reset_event_bus,
)
from rentflow.observability import set_correlation_id


class TestEvents:
    """Tests for event payloads."""

    def test_event_type_and_dict(self):
        event = LeaseSigned(lease_id="L1", timestamp=10, signer="abc", signer_type="tenant")
        d = event.to_dict()
        assert d["event_type"] == "LeaseSigned"
        assert d["signer_type"] == "tenant"
        assert d["lease_id"] == "L1"

    def test_digest_ignores_delivery_metadata(self):
        a = LeaseStatusChanged(lease_id="L1", timestamp=5, old_status="Active", new_status="Terminated")
        b = LeaseStatusChanged(lease_id="L1", timestamp=5, old_status="Active", new_status="Terminated")
        b.correlation_id = "corr-other"

        assert a.event_id != b.event_id
        assert a.digest() == b.digest()
        assert a.digest() != LeaseStatusChanged(lease_id="L1", timestamp=6).digest()


class TestEventBus:
    """Tests for subscription, ordering and failure isolation."""

    def test_type_routing(self):
        bus = EventBus()
        seen = []

        @bus.subscribe(LeaseActivated)
        def on_activated(event):
            seen.append(event.event_type)

        bus.publish(LeaseSigned(lease_id="L1"))
        bus.publish(LeaseActivated(lease_id="L1"))
        assert seen == ["LeaseActivated"]

    def test_subscribe_all(self):
        bus = EventBus()
        seen = []
        bus.subscribe()(lambda e: seen.append(e.event_type))

        bus.publish(LeaseCreated(lease_id="L1"))
        bus.publish(LeaseActivated(lease_id="L1"))
        assert seen == ["LeaseCreated", "LeaseActivated"]

    def test_priority_order(self):
        bus = EventBus()
        order = []
        bus.subscribe(Event, priority=1)(lambda e: order.append("low"))
        bus.subscribe(Event, priority=10)(lambda e: order.append("high"))

        bus.publish(LeaseActivated(lease_id="L1"))
        assert order == ["high", "low"]

    def test_filter(self):
        bus = EventBus()
        seen = []
        bus.subscribe(LeaseSigned, filter_func=lambda e: e.signer_type == "tenant")(seen.append)

        bus.publish(LeaseSigned(lease_id="L1", signer_type="manager"))
        bus.publish(LeaseSigned(lease_id="L1", signer_type="tenant"))
        assert [e.signer_type for e in seen] == ["tenant"]

    def test_unsubscribe(self):
        bus = EventBus()
        seen = []

        def handler(event):
            seen.append(event)

        bus.subscribe()(handler)
        assert bus.unsubscribe(handler)
        assert not bus.unsubscribe(handler)
        bus.publish(LeaseActivated(lease_id="L1"))
        assert seen == []

    def test_handler_failure_is_isolated(self, caplog):
        errors = []
        bus = EventBus(on_error=errors.append)
        seen = []

        @bus.subscribe(priority=5)
        def broken(event):
            raise RuntimeError("boom")

        bus.subscribe()(seen.append)

        with caplog.at_level(logging.ERROR, logger="rentflow"):
            bus.publish(LeaseActivated(lease_id="L1"))

        assert len(seen) == 1
        assert len(errors) == 1
        assert isinstance(errors[0], EventHandlerError)
        assert isinstance(errors[0].cause, RuntimeError)
        assert any(getattr(r, "error_code", "") == "EVENT_HANDLER_FAILED" for r in caplog.records)
        assert bus.metrics == {
            "published_count": 1,
            "handled_count": 1,
            "error_count": 1,
            "handler_count": 2,
        }

    def test_correlation_id_attached(self):
        bus = EventBus()
        seen = []
        bus.subscribe()(seen.append)
        token = set_correlation_id("corr-test")
        try:
            bus.publish(LeaseActivated(lease_id="L1"))
        finally:
            from rentflow.observability import correlation_id_var
            correlation_id_var.reset(token)

        assert seen[0].correlation_id == "corr-test"


class TestDefaultBus:
    """Tests for the process-wide bus."""

    @pytest.fixture(autouse=True)
    def _fresh(self):
        reset_event_bus()
        yield
        reset_event_bus()

    def test_singleton(self):
        assert get_event_bus() is get_event_bus()

    def test_reset(self):
        first = get_event_bus()
        reset_event_bus()
        assert get_event_bus() is not first
