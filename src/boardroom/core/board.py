"""Board configuration: roles, challenge policy, phase gates and protected assets.

The board file is YAML (``config/board.yml`` by default). Every role name
referenced from a ``challenges`` list or a gate's ``required`` list must be
declared under ``roles``; this is checked once when the board is loaded so
the engines never have to deal with unknown roles at call time.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator

from boardroom.core.config import DEFAULT_BOARD_PATH
from boardroom.core.errors import GovernanceValidationError


class RoleConfig(BaseModel):
    """A single board role.

    ``challenges`` lists the roles that must resolve this role's decisions;
    ``gates`` lists gates this role may issue verdicts for, in addition to
    each gate's own ``required`` roles.
    """

    title: str
    challenges: list[str] = Field(default_factory=list)
    gates: list[str] = Field(default_factory=list)


class ChallengeConfig(BaseModel):
    """Round-limit policy for the challenge workflow."""

    max_rounds: int = Field(default=3, ge=1)
    auto_escalation: bool = True


class GateDefinition(BaseModel):
    """Phase-transition gate.

    A gate guards exactly one transition ``from_phase -> to_phase``. Its
    verdicts may be issued by the roles in ``required`` and by roles listing
    the gate under their own ``gates`` (any role when neither names one).
    An ``advisory`` gate reports FAIL outcomes without blocking advancement.
    """

    gate_id: str = ""
    required: list[str] = Field(default_factory=list)
    from_phase: int = Field(ge=0)
    to_phase: int = Field(ge=1)
    verdict_type: Literal["advisory", "structural"] = "structural"

    @model_validator(mode="after")
    def _single_step(self) -> GateDefinition:
        if self.to_phase != self.from_phase + 1:
            raise ValueError(
                f"Gate '{self.gate_id}' must guard a single-step transition, "
                f"got {self.from_phase} -> {self.to_phase}"
            )
        return self


class GovernanceConfig(BaseModel):
    """Paths no role may write, whatever scope it is granted."""

    protected_assets: list[str] = Field(default_factory=list)


class BoardConfig(BaseModel):
    """Validated board definition."""

    name: str
    version: int = 1
    roles: dict[str, RoleConfig]
    challenge: ChallengeConfig = Field(default_factory=ChallengeConfig)
    gates: dict[str, GateDefinition] = Field(default_factory=dict)
    governance: GovernanceConfig = Field(default_factory=GovernanceConfig)

    @model_validator(mode="before")
    @classmethod
    def _stamp_gate_ids(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("gates"), dict):
            gates = {}
            for gate_id, gate in data["gates"].items():
                if isinstance(gate, dict):
                    gate = {**gate, "gate_id": gate_id}
                gates[gate_id] = gate
            data = {**data, "gates": gates}
        return data

    @model_validator(mode="after")
    def _check_references(self) -> BoardConfig:
        if not self.roles:
            raise ValueError("Board config must define at least one role")

        for role_name, role in self.roles.items():
            for challenger in role.challenges:
                if challenger not in self.roles:
                    raise ValueError(
                        f"Role '{role_name}' is challenged by non-existent role '{challenger}'"
                    )
            for gate_id in role.gates:
                if gate_id not in self.gates:
                    raise ValueError(
                        f"Role '{role_name}' references non-existent gate '{gate_id}'"
                    )

        transitions: dict[tuple[int, int], str] = {}
        for gate_id, gate in self.gates.items():
            for required in gate.required:
                if required not in self.roles:
                    raise ValueError(
                        f"Gate '{gate_id}' requires non-existent role '{required}'"
                    )
            key = (gate.from_phase, gate.to_phase)
            if key in transitions:
                raise ValueError(
                    f"Gates '{transitions[key]}' and '{gate_id}' both guard "
                    f"transition {key[0]} -> {key[1]}"
                )
            transitions[key] = gate_id
        return self

    def challengers_for(self, role: str) -> list[str]:
        """Roles that must resolve decisions authored by ``role``."""
        role_config = self.roles.get(role)
        return list(role_config.challenges) if role_config else []

    def gate_for_transition(self, from_phase: int, to_phase: int) -> GateDefinition | None:
        for gate in self.gates.values():
            if gate.from_phase == from_phase and gate.to_phase == to_phase:
                return gate
        return None


def load_board_config(path: str | Path | None = None) -> BoardConfig:
    """Load and validate a board definition from YAML.

    Raises:
        FileNotFoundError: If the file does not exist.
        GovernanceValidationError: If the board references unknown roles or
            gates, or is otherwise malformed.
    """
    config_path = Path(path) if path else DEFAULT_BOARD_PATH
    with open(config_path) as fh:
        raw = yaml.safe_load(fh) or {}
    return parse_board_config(raw)


def parse_board_config(raw: dict[str, Any]) -> BoardConfig:
    """Validate an already-parsed board mapping."""
    try:
        return BoardConfig.model_validate(raw)
    except ValidationError as exc:
        raise GovernanceValidationError(f"Invalid board config: {exc}") from exc
