"""Event bus dispatch and owner-thread serialization."""

import threading

from forever_paws.core.events import Event, EventBus, UserSignedIn, UserSignedOut
from forever_paws.core.owner import OwnerExecutor


def test_subscribe_publish_unsubscribe():
    bus = EventBus()
    seen = []
    unsubscribe = bus.subscribe(UserSignedIn, seen.append)

    bus.publish(UserSignedIn(user_id="u1", email="a@pawmail.com"))
    bus.publish(UserSignedOut(user_id="u1"))
    unsubscribe()
    bus.publish(UserSignedIn(user_id="u2", email="b@pawmail.com"))

    assert [e.user_id for e in seen] == ["u1"]
    # second unsubscribe is a no-op
    unsubscribe()


def test_base_class_subscription_sees_every_event():
    bus = EventBus()
    seen = []
    bus.subscribe(Event, seen.append)

    bus.publish(UserSignedIn(user_id="u1", email="a@pawmail.com"))
    bus.publish(UserSignedOut(user_id=None))

    assert [type(e).__name__ for e in seen] == ["UserSignedIn", "UserSignedOut"]


def test_failing_handler_does_not_stop_others():
    bus = EventBus()
    seen = []

    def broken(event):
        raise RuntimeError("boom")

    bus.subscribe(UserSignedOut, broken)
    bus.subscribe(UserSignedOut, seen.append)

    bus.publish(UserSignedOut(user_id="u1"))

    assert len(seen) == 1


def test_owner_runs_on_one_thread_and_reenters():
    owner = OwnerExecutor()
    try:
        caller = threading.get_ident()
        outer_ident = owner.run(threading.get_ident)
        nested = owner.run(lambda: (owner.on_owner(), owner.run(threading.get_ident)))

        assert outer_ident != caller
        assert nested == (True, outer_ident)
        assert not owner.on_owner()
    finally:
        owner.shutdown()


def test_owner_serializes_mutations():
    owner = OwnerExecutor()
    counter = {"value": 0}

    def bump():
        current = counter["value"]
        counter["value"] = current + 1

    try:
        threads = [threading.Thread(target=lambda: [owner.run(bump) for _ in range(50)]) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert counter["value"] == 200
    finally:
        owner.shutdown()
