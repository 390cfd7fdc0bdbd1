from __future__ import annotations

import pytest

from fakes import FakeClock, FakeLinkedIn


@pytest.fixture
def fake_linkedin() -> FakeLinkedIn:
    return FakeLinkedIn()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()
