import asyncio

import pytest

from counterlink.errors import CandidateApplicationFailed, InvalidTransition
from counterlink.negotiation import CandidateBuffer

from fakes import FakeHandle, candidate


def test_append_keeps_arrival_order() -> None:
    buffer = CandidateBuffer()
    for index in (3, 1, 2):
        buffer.append(candidate(index))

    assert len(buffer) == 3
    assert list(buffer) == [candidate(3), candidate(1), candidate(2)]
    assert buffer.snapshot() == (candidate(3), candidate(1), candidate(2))
    assert buffer.drained is False


def test_drain_applies_in_order_and_empties() -> None:
    buffer = CandidateBuffer()
    handle = FakeHandle()
    for index in range(5):
        buffer.append(candidate(index))

    applied = asyncio.run(buffer.drain_into(handle))

    assert applied == 5
    assert handle.applied == [candidate(index) for index in range(5)]
    assert len(buffer) == 0
    assert buffer.drained is True


def test_drain_twice_is_rejected() -> None:
    buffer = CandidateBuffer()
    handle = FakeHandle()
    buffer.append(candidate(1))
    asyncio.run(buffer.drain_into(handle))

    with pytest.raises(InvalidTransition):
        asyncio.run(buffer.drain_into(handle))
    assert handle.applied == [candidate(1)]


def test_drain_of_empty_buffer_counts_as_drained() -> None:
    buffer = CandidateBuffer()

    assert asyncio.run(buffer.drain_into(FakeHandle())) == 0
    assert buffer.drained is True


def test_drain_stops_at_first_rejection() -> None:
    buffer = CandidateBuffer()
    handle = FakeHandle()
    handle.reject_candidates.append(candidate(2).candidate)
    for index in range(1, 5):
        buffer.append(candidate(index))

    with pytest.raises(CandidateApplicationFailed) as excinfo:
        asyncio.run(buffer.drain_into(handle))

    assert handle.applied == [candidate(1)]
    assert excinfo.value.candidate == candidate(2)
    assert excinfo.value.discarded == 2
    assert isinstance(excinfo.value.__cause__, ValueError)
    assert len(buffer) == 0


def test_clear_discards_pending_candidates() -> None:
    buffer = CandidateBuffer()
    buffer.append(candidate(1))
    buffer.clear()

    assert len(buffer) == 0
    assert buffer.drained is False
