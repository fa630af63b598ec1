"""Phase gates: verdict-driven phase transitions per project."""

from boardroom.gates.engine import PhaseGateEngine
from boardroom.gates.models import AdvanceCheck, AdvanceResult, GateHistoryQuery, GateVerdict, PhaseState

__all__ = [
    "AdvanceCheck",
    "AdvanceResult",
    "GateHistoryQuery",
    "GateVerdict",
    "PhaseGateEngine",
    "PhaseState",
]
