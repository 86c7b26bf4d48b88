"""Shared fixtures for snapshot_cleanup tests."""

from __future__ import annotations

from typing import Any

import pytest

from snapshot_cleanup.config import RunConfig

from fakes import utc


@pytest.fixture()
def now():
    return utc(2024, 6, 17)


@pytest.fixture()
def make_config():
    def _make(**kwargs: Any) -> RunConfig:
        data: dict[str, Any] = {
            "mail_server": "smtp.example.com",
            "recipients": ["ops@example.com"],
            "mail_from": "snapshot-cleanup@example.com",
        }
        data.update(kwargs)
        return RunConfig(**data)

    return _make
