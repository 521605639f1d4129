"""Phase contracts and the legal state-transition matrix.

The five core phases are:

1. DISCOVER  -- parse user input, detect the target domain.
2. ELICIT    -- ask domain-specific questions, refine requirements.
3. BLUEPRINT -- select architecture patterns and the file manifest.
4. GENERATE  -- create every file declared in the blueprint.
5. INTEGRATE -- wire up assistant integration and produce the final report.

``PhaseRegistry`` is pure and side-effect-free: it owns no run state, so a
single instance can be shared by any number of orchestrators and by dry runs.
"""

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType
from typing import Any, Optional

from rich.table import Table

from scaffoldflow.orchestrator.errors import UnknownPhaseError
from scaffoldflow.orchestrator.models import (
    PHASE_ORDER,
    InputValidation,
    OrchestratorState,
    OutputValidation,
    Phase,
    PhaseDefinition,
    TransitionResult,
)
from scaffoldflow.utils import console

_S = OrchestratorState

# ---------------------------------------------------------------------------
# Phase definitions
# ---------------------------------------------------------------------------

PHASE_DEFINITIONS: Mapping[Phase, PhaseDefinition] = MappingProxyType({
    Phase.DISCOVER: PhaseDefinition(
        id=Phase.DISCOVER,
        label="Discovery",
        description=(
            "Parses raw user input to detect the target domain, initial constraints, "
            "and high-level requirements for the project to be generated."
        ),
        state=_S.DISCOVERING,
        required_input_keys=("userInput",),
        optional_input_keys=("hints", "previousAttempt"),
        output_keys=("domain", "constraints", "requirements", "detectedPatterns"),
        order=0,
    ),
    Phase.ELICIT: PhaseDefinition(
        id=Phase.ELICIT,
        label="Elicitation",
        description=(
            "Poses domain-specific questions to refine requirements, resolve "
            "ambiguities, and gather preferences."
        ),
        state=_S.ELICITING,
        required_input_keys=("domain", "requirements"),
        optional_input_keys=("constraints", "detectedPatterns"),
        output_keys=("refinedRequirements", "userPreferences", "clarifications"),
        order=1,
    ),
    Phase.BLUEPRINT: PhaseDefinition(
        id=Phase.BLUEPRINT,
        label="Blueprinting",
        description=(
            "Selects architecture patterns, directory structures, dependency graphs, "
            "and configuration templates based on refined requirements."
        ),
        state=_S.BLUEPRINTING,
        required_input_keys=("domain", "refinedRequirements", "userPreferences"),
        optional_input_keys=("constraints", "detectedPatterns", "clarifications"),
        output_keys=(
            "architecturePattern",
            "directoryStructure",
            "dependencyGraph",
            "configTemplates",
            "fileManifest",
        ),
        order=2,
    ),
    Phase.GENERATE: PhaseDefinition(
        id=Phase.GENERATE,
        label="Generation",
        description=(
            "Creates every file declared in the blueprint: source code, configs, "
            "tests and documentation."
        ),
        state=_S.GENERATING,
        required_input_keys=(
            "architecturePattern",
            "directoryStructure",
            "fileManifest",
            "configTemplates",
        ),
        optional_input_keys=("dependencyGraph", "userPreferences"),
        output_keys=("generatedFiles", "generationReport"),
        order=3,
    ),
    Phase.INTEGRATE: PhaseDefinition(
        id=Phase.INTEGRATE,
        label="Integration",
        description=(
            "Wires up assistant integration (instruction files, tool configs, "
            "slash commands) and post-generation hooks."
        ),
        state=_S.INTEGRATING,
        required_input_keys=("generatedFiles", "generationReport"),
        optional_input_keys=("architecturePattern", "directoryStructure", "userPreferences"),
        output_keys=("integrationManifest", "claudeConfig", "finalReport"),
        order=4,
    ),
})

# ---------------------------------------------------------------------------
# Transition matrix (from -> {to, ...})
# ---------------------------------------------------------------------------

_PHASE_STATES = frozenset({
    _S.DISCOVERING, _S.ELICITING, _S.BLUEPRINTING, _S.GENERATING, _S.INTEGRATING,
})

TRANSITIONS: Mapping[OrchestratorState, frozenset[OrchestratorState]] = MappingProxyType({
    _S.IDLE: frozenset({_S.DISCOVERING, _S.ERROR}),
    _S.DISCOVERING: frozenset({_S.ELICITING, _S.VALIDATING, _S.ERROR}),
    _S.ELICITING: frozenset({_S.BLUEPRINTING, _S.VALIDATING, _S.ERROR}),
    _S.BLUEPRINTING: frozenset({_S.GENERATING, _S.VALIDATING, _S.ERROR}),
    _S.GENERATING: frozenset({_S.INTEGRATING, _S.VALIDATING, _S.ERROR}),
    _S.INTEGRATING: frozenset({_S.VALIDATING, _S.COMPLETE, _S.ERROR}),
    # Validation may hand back to any phase for a re-run.
    _S.VALIDATING: _PHASE_STATES | {_S.COMPLETE, _S.ERROR},
    _S.ERROR: _PHASE_STATES | {_S.IDLE},
    _S.COMPLETE: frozenset({_S.IDLE}),
})


def _coerce_state(value: Any) -> Optional[OrchestratorState]:
    try:
        return OrchestratorState(value)
    except ValueError:
        return None


def _sorted_states(states: frozenset[OrchestratorState]) -> list[OrchestratorState]:
    members = list(OrchestratorState)
    return sorted(states, key=members.index)


# ---------------------------------------------------------------------------
# PhaseRegistry
# ---------------------------------------------------------------------------


class PhaseRegistry:
    """Authority for phase metadata, contract validation and legal transitions.

    Args:
        definitions: Phase contracts keyed by phase. Defaults to the canonical
            five-phase contracts.
        transitions: Transition matrix. Defaults to the canonical matrix.
    """

    def __init__(
        self,
        definitions: Mapping[Phase, PhaseDefinition] | None = None,
        transitions: Mapping[OrchestratorState, frozenset[OrchestratorState]] | None = None,
    ) -> None:
        self._definitions = MappingProxyType(dict(definitions or PHASE_DEFINITIONS))
        self._transitions = MappingProxyType(dict(transitions or TRANSITIONS))

    # ------------------------------------------------------------------
    # Phase metadata
    # ------------------------------------------------------------------

    def get_definition(self, phase_id: Phase | str) -> PhaseDefinition:
        """Return the contract for *phase_id*.

        Raises:
            UnknownPhaseError: If *phase_id* is not a known phase.
        """
        try:
            return self._definitions[Phase(phase_id)]
        except (ValueError, KeyError):
            raise UnknownPhaseError(phase_id) from None

    def get_all_definitions(self) -> dict[Phase, PhaseDefinition]:
        """Return every definition keyed by phase."""
        return dict(self._definitions)

    def get_ordered_definitions(self) -> list[PhaseDefinition]:
        """Return definitions in pipeline execution order."""
        return sorted(self._definitions.values(), key=lambda d: d.order)

    @property
    def phase_order(self) -> tuple[Phase, ...]:
        return tuple(d.id for d in self.get_ordered_definitions())

    def get_state_for_phase(self, phase_id: Phase | str) -> OrchestratorState:
        return self.get_definition(phase_id).state

    def get_next_phase(self, phase_id: Phase | str) -> Optional[Phase]:
        """Phase that follows *phase_id*, or ``None`` for the last phase."""
        order = self.phase_order
        index = order.index(self.get_definition(phase_id).id) + 1
        return order[index] if index < len(order) else None

    def get_previous_phase(self, phase_id: Phase | str) -> Optional[Phase]:
        """Phase that precedes *phase_id*, or ``None`` for the first phase."""
        order = self.phase_order
        index = order.index(self.get_definition(phase_id).id) - 1
        return order[index] if index >= 0 else None

    def is_first_phase(self, phase_id: Phase | str) -> bool:
        return self.get_previous_phase(phase_id) is None

    def is_last_phase(self, phase_id: Phase | str) -> bool:
        return self.get_next_phase(phase_id) is None

    # ------------------------------------------------------------------
    # Transition validation
    # ------------------------------------------------------------------

    def get_valid_transitions(self, from_state: OrchestratorState | str) -> list[OrchestratorState]:
        """Legal target states from *from_state* (empty for unknown states)."""
        state = _coerce_state(from_state)
        if state is None:
            return []
        return _sorted_states(self._transitions.get(state, frozenset()))

    def is_valid_transition(
        self, from_state: OrchestratorState | str, to_state: OrchestratorState | str
    ) -> bool:
        source, target = _coerce_state(from_state), _coerce_state(to_state)
        if source is None or target is None:
            return False
        return target in self._transitions.get(source, frozenset())

    def validate_transition(
        self, from_state: OrchestratorState | str, to_state: OrchestratorState | str
    ) -> TransitionResult:
        """Check a proposed transition. Never raises."""
        source, target = _coerce_state(from_state), _coerce_state(to_state)
        if source is None:
            return TransitionResult(valid=False, reason=f'Unknown source state: "{from_state}"')
        if target is None:
            return TransitionResult(valid=False, reason=f'Unknown target state: "{to_state}"')

        if not self.is_valid_transition(source, target):
            allowed = ", ".join(s.value for s in self.get_valid_transitions(source))
            return TransitionResult(
                valid=False,
                reason=(
                    f'Transition from "{source.value}" to "{target.value}" is not allowed. '
                    f"Valid targets: [{allowed}]"
                ),
            )
        return TransitionResult(valid=True)

    # ------------------------------------------------------------------
    # Input / output validation
    # ------------------------------------------------------------------

    def validate_phase_input(
        self, phase_id: Phase | str, context: Mapping[str, Any] | None
    ) -> InputValidation:
        """Check that every required input key is present in *context*.

        Presence is by key only: a key holding ``None``, ``0`` or ``""``
        still counts.
        """
        definition = self.get_definition(phase_id)
        keys = set(context or {})
        missing = [k for k in definition.required_input_keys if k not in keys]
        optional = [k for k in definition.optional_input_keys if k in keys]
        return InputValidation(valid=not missing, missing=missing, optional=optional)

    def validate_phase_output(
        self, phase_id: Phase | str, output: Mapping[str, Any] | None
    ) -> OutputValidation:
        """Check that *output* contains every declared output key."""
        definition = self.get_definition(phase_id)
        keys = set(output or {})
        missing = [k for k in definition.output_keys if k not in keys]
        produced = [k for k in definition.output_keys if k in keys]
        return OutputValidation(valid=not missing, missing=missing, produced=produced)

    # ------------------------------------------------------------------
    # Summaries
    # ------------------------------------------------------------------

    def get_summary(self) -> list[dict[str, Any]]:
        """Concise per-phase summary suitable for logging or display."""
        return [
            {
                "id": d.id.value,
                "label": d.label,
                "order": d.order,
                "inputs": list(d.required_input_keys),
                "outputs": list(d.output_keys),
            }
            for d in self.get_ordered_definitions()
        ]

    def format_transition_matrix(self) -> str:
        """Render the transition matrix as plain text for debugging."""
        lines = ["Transition Matrix:"]
        for state in OrchestratorState:
            if state not in self._transitions:
                continue
            targets = ", ".join(s.value for s in self.get_valid_transitions(state))
            lines.append(f"  {state.value:<14} -> [{targets}]")
        return "\n".join(lines)

    def print_summary(self) -> None:
        """Print the phase contracts as a Rich table."""
        table = Table(title="Pipeline Phases", show_header=True, header_style="bold cyan")
        table.add_column("#", style="dim", no_wrap=True)
        table.add_column("Phase", no_wrap=True)
        table.add_column("Requires")
        table.add_column("Produces")

        for d in self.get_ordered_definitions():
            table.add_row(
                str(d.order + 1),
                d.label,
                ", ".join(d.required_input_keys) or "-",
                ", ".join(d.output_keys) or "-",
            )

        console.print(table)
        console.print()


__all__ = [
    "PHASE_DEFINITIONS",
    "PHASE_ORDER",
    "PhaseRegistry",
    "TRANSITIONS",
]
