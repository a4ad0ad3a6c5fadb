"""Fixtures for the guild sync engine tests."""

from __future__ import annotations

import pytest

from sync_fakes import FakeGateway, SleepRecorder, build_reconciler


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def make_reconciler(gateway, sleeps):
    def _build(sheet, **kwargs):
        kwargs.setdefault("sleep", sleeps)
        return build_reconciler(gateway, sheet, **kwargs)

    return _build
