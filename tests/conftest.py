"""Shared test fixtures and helpers."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from boardroom.core.board import BoardConfig, parse_board_config


def board_dict(**overrides: Any) -> dict[str, Any]:
    """A small board definition: ceo and cto challenge each other, qa issues verdicts."""
    config: dict[str, Any] = {
        "name": "Test Board",
        "roles": {
            "ceo": {"title": "CEO", "challenges": ["cto"]},
            "cto": {"title": "CTO", "challenges": ["ceo"]},
            "qa": {"title": "QA", "gates": ["G"]},
            "auditor": {"title": "Auditor"},
        },
        "challenge": {"max_rounds": 3, "auto_escalation": True},
        "gates": {
            "G0": {"required": ["qa"], "from_phase": 0, "to_phase": 1},
            "G": {"required": ["qa"], "from_phase": 2, "to_phase": 3},
            "G3": {"required": [], "from_phase": 3, "to_phase": 4},
        },
        "governance": {
            "protected_assets": [
                "board.yaml",
                "CONSTITUTION.md",
                "src/governance/**",
                "prompts/**",
            ],
        },
    }
    config.update(overrides)
    return config


@pytest.fixture()
def board() -> BoardConfig:
    return parse_board_config(board_dict())


class FakeClock:
    """Manually advanced clock for expiry and ordering tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()
