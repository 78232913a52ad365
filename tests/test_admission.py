import random

import pytest

from media_relay.errors import AdmissionRejected
from media_relay.services.admission import AdmissionController


def test_rate_limit_rejects_eleventh_request_in_window() -> None:
    ctl = AdmissionController(rate_limit_max=10, window_ms=1000)

    results = [ctl.allow_request(now=5_000 + i) for i in range(11)]

    assert results[:10] == [True] * 10
    assert results[10] is False
    assert ctl.rejected_requests == 1


def test_rate_window_slides() -> None:
    ctl = AdmissionController(rate_limit_max=2, window_ms=1000)

    assert ctl.allow_request(now=0)
    assert ctl.allow_request(now=10)
    assert not ctl.allow_request(now=20)
    # Only entries more than 1000 ms old leave the window.
    assert ctl.allow_request(now=1_015)
    assert ctl.window_size <= 3


def test_entry_exactly_one_window_old_still_counts() -> None:
    ctl = AdmissionController(rate_limit_max=1, window_ms=1000)

    assert ctl.allow_request(now=0)
    assert not ctl.allow_request(now=1_000)
    assert ctl.window_size == 2

    later = AdmissionController(rate_limit_max=1, window_ms=1000)
    assert later.allow_request(now=0)
    assert later.allow_request(now=1_001)
    assert later.window_size == 1


def test_admit_raises_on_rate_limit() -> None:
    ctl = AdmissionController(rate_limit_max=1, window_ms=1000)
    ctl.admit(now=0)
    with pytest.raises(AdmissionRejected) as info:
        ctl.admit(now=1)
    assert info.value.reason == "rate"


def test_accepted_requests_never_exceed_limit_in_any_window() -> None:
    rng = random.Random(1234)
    ctl = AdmissionController(rate_limit_max=10, window_ms=1000)
    now = 0.0
    accepted: list[float] = []
    for _ in range(2_000):
        now += rng.choice([0, 1, 5, 20, 50, 150, 400])
        if ctl.allow_request(now=now):
            accepted.append(now)

    for t in accepted:
        in_window = [a for a in accepted if t - 1000 < a <= t]
        assert len(in_window) <= 10


def test_twenty_first_session_rejected_without_touching_counter() -> None:
    ctl = AdmissionController(max_sessions=20)
    leases = [ctl.acquire_session() for _ in range(20)]
    assert ctl.active_sessions == 20

    with pytest.raises(AdmissionRejected) as info:
        ctl.acquire_session()

    assert info.value.reason == "concurrency"
    assert ctl.active_sessions == 20
    assert ctl.rejected_sessions == 1
    assert len(leases) == 20


def test_lease_release_is_idempotent() -> None:
    ctl = AdmissionController(max_sessions=2)
    lease = ctl.acquire_session()

    lease.release()
    lease.release()

    assert ctl.active_sessions == 0
    assert ctl.allow_session()


def test_counter_stays_in_bounds_under_random_churn() -> None:
    rng = random.Random(42)
    ctl = AdmissionController(max_sessions=20)
    live = []
    for _ in range(5_000):
        if live and rng.random() < 0.45:
            lease = live.pop(rng.randrange(len(live)))
            lease.release()
            if rng.random() < 0.2:
                lease.release()
        else:
            try:
                live.append(ctl.acquire_session())
            except AdmissionRejected:
                pass
        assert 0 <= ctl.active_sessions <= 20
        assert ctl.active_sessions == len(live)
