import threading
import time

import pytest

from finnest.errors import StoreUnavailable
from finnest.services import user_locks
from finnest.services.user_locks import user_lock


def test_lock_can_be_taken_again_after_release():
    with user_lock(101):
        pass
    with user_lock(101):
        pass


def test_busy_user_times_out():
    holding = threading.Event()
    release = threading.Event()

    def hold():
        with user_lock(202):
            holding.set()
            release.wait(5)

    worker = threading.Thread(target=hold)
    worker.start()
    try:
        assert holding.wait(5)
        with pytest.raises(StoreUnavailable):
            with user_lock(202, timeout=0.05):
                pass
    finally:
        release.set()
        worker.join()

    with user_lock(202, timeout=1):
        pass


def test_different_users_do_not_block():
    with user_lock(303):
        with user_lock(304, timeout=0.05):
            pass


def test_same_user_serialized():
    events = []

    def work(tag):
        with user_lock(405):
            events.append(("start", tag))
            time.sleep(0.02)
            events.append(("end", tag))

    threads = [threading.Thread(target=work, args=(i,)) for i in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    for i in range(0, len(events), 2):
        assert events[i][0] == "start"
        assert events[i + 1] == ("end", events[i][1])


def test_lock_released_after_error():
    with pytest.raises(RuntimeError):
        with user_lock(506):
            raise RuntimeError("boom")
    with user_lock(506, timeout=0.05):
        pass


def test_registry_holds_one_lock_per_user():
    with user_lock(607):
        pass
    with user_lock(607):
        pass
    with user_lock(608):
        pass
    assert user_locks._lock_for(607) is user_locks._lock_for(607)
    assert user_locks._lock_for(607) is not user_locks._lock_for(608)
    assert {607, 608} <= set(user_locks._USER_LOCKS)
