import threading

import pytest

from imgrelay.semaphore import Semaphore


def test_try_acquire_respects_capacity():
    sem = Semaphore(2)
    first = sem.try_acquire()
    second = sem.try_acquire()
    assert first is not None and second is not None
    assert sem.try_acquire() is None


def test_release_frees_slot():
    sem = Semaphore(1)
    token = sem.try_acquire()
    assert token is not None
    assert sem.try_acquire() is None
    token.release()
    assert sem.try_acquire() is not None


def test_double_release_does_not_grow_capacity():
    sem = Semaphore(1)
    token = sem.try_acquire()
    token.release()
    token.release()
    assert sem.try_acquire() is not None
    assert sem.try_acquire() is None


def test_zero_size_never_grants():
    sem = Semaphore(0)
    assert sem.try_acquire() is None
    assert sem.acquire(timeout=0.01) is None


def test_acquire_times_out_when_full():
    sem = Semaphore(1)
    held = sem.acquire(timeout=0.1)
    assert held is not None
    assert sem.acquire(timeout=0.02) is None


def test_token_as_context_manager_releases():
    sem = Semaphore(1)
    with sem.try_acquire() as token:
        assert token is not None
        assert sem.try_acquire() is None
    assert sem.try_acquire() is not None


def test_acquire_waits_for_release_from_other_thread():
    sem = Semaphore(1)
    token = sem.try_acquire()
    got = []
    started = threading.Event()

    def waiter():
        started.set()
        got.append(sem.acquire(timeout=5))

    thread = threading.Thread(target=waiter)
    thread.start()
    started.wait()
    token.release()
    thread.join(timeout=5)
    assert len(got) == 1
    waiter_token = got[0]
    assert waiter_token is not None
    # The waiter's token now holds the only slot.
    assert sem.try_acquire() is None
    waiter_token.release()
    assert sem.try_acquire() is not None


def test_negative_size_rejected():
    with pytest.raises(ValueError):
        Semaphore(-1)