# tests/client/test_backoff.py
import pytest

from duet_chat.client import Backoff


def test_delays_grow_by_factor_until_cap() -> None:
    backoff = Backoff()
    delays = [backoff.next_delay() for _ in range(12)]
    assert delays[:4] == [10.0, 15.0, 22.5, 33.75]
    assert max(delays) == 300.0
    assert delays[-1] == 300.0
    assert all(a <= b for a, b in zip(delays, delays[1:]))


def test_reset_returns_to_initial() -> None:
    backoff = Backoff(initial=2.0, factor=2.0, maximum=5.0)
    assert [backoff.next_delay() for _ in range(4)] == [2.0, 4.0, 5.0, 5.0]
    backoff.reset()
    assert backoff.next_delay() == 2.0


@pytest.mark.parametrize(
    "kwargs",
    [
        {"initial": 0},
        {"factor": 0.5},
        {"initial": 10.0, "maximum": 5.0},
    ],
)
def test_rejects_nonsense(kwargs: dict) -> None:
    with pytest.raises(ValueError):
        Backoff(**kwargs)
