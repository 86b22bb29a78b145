"""Shared pytest fixtures."""

from datetime import datetime, timedelta, timezone

import pytest

from sbd import MobileOriginatedMessage

SESSION = datetime(2018, 9, 1, 12, 0, 0, tzinfo=timezone.utc)
IMEI = "300234063554810"


@pytest.fixture
def make_burst():
    """Factory for bursts: ``make_burst(payload, seconds=0, momsn=0)``."""

    def _make(payload: bytes, seconds: int = 0, momsn: int = 0, imei: str = IMEI):
        return MobileOriginatedMessage(
            imei=imei,
            time_of_session=SESSION + timedelta(seconds=seconds),
            payload=payload,
            momsn=momsn,
        )

    return _make
