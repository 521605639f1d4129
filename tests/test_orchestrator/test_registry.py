"""Unit tests for PhaseRegistry (scaffoldflow.orchestrator.registry).

Tests cover:
- Definitions: lookup, immutability, ordering, unknown phases
- Navigation: next/previous/first/last
- Transition matrix: every legal pair valid, every other pair rejected
- Input/output validation with presence semantics
- Summaries and matrix formatting
"""

from __future__ import annotations

import itertools

import pytest
from pydantic import ValidationError

from scaffoldflow.orchestrator import (
    PHASE_ORDER,
    TRANSITIONS,
    OrchestratorState,
    Phase,
    PhaseRegistry,
    UnknownPhaseError,
)

S = OrchestratorState

EXPECTED_TRANSITIONS = {
    S.IDLE: {S.DISCOVERING, S.ERROR},
    S.DISCOVERING: {S.ELICITING, S.VALIDATING, S.ERROR},
    S.ELICITING: {S.BLUEPRINTING, S.VALIDATING, S.ERROR},
    S.BLUEPRINTING: {S.GENERATING, S.VALIDATING, S.ERROR},
    S.GENERATING: {S.INTEGRATING, S.VALIDATING, S.ERROR},
    S.INTEGRATING: {S.VALIDATING, S.COMPLETE, S.ERROR},
    S.VALIDATING: {
        S.DISCOVERING, S.ELICITING, S.BLUEPRINTING, S.GENERATING, S.INTEGRATING,
        S.COMPLETE, S.ERROR,
    },
    S.ERROR: {S.IDLE, S.DISCOVERING, S.ELICITING, S.BLUEPRINTING, S.GENERATING, S.INTEGRATING},
    S.COMPLETE: {S.IDLE},
}


# ---------------------------------------------------------------------------
# Definitions
# ---------------------------------------------------------------------------

class TestDefinitions:
    @pytest.mark.unit
    def test_lookup_by_enum_and_string(self, registry: PhaseRegistry):
        assert registry.get_definition(Phase.DISCOVER) is registry.get_definition("DISCOVER")

    @pytest.mark.unit
    def test_unknown_phase_raises(self, registry: PhaseRegistry):
        with pytest.raises(UnknownPhaseError, match="NOPE"):
            registry.get_definition("NOPE")

    @pytest.mark.unit
    def test_unknown_phase_is_key_error(self, registry: PhaseRegistry):
        with pytest.raises(KeyError):
            registry.get_definition("discover")

    @pytest.mark.unit
    def test_definitions_are_frozen(self, registry: PhaseRegistry):
        definition = registry.get_definition(Phase.DISCOVER)
        with pytest.raises(ValidationError):
            definition.order = 3

    @pytest.mark.unit
    def test_discover_contract(self, registry: PhaseRegistry):
        definition = registry.get_definition(Phase.DISCOVER)
        assert definition.required_input_keys == ("userInput",)
        assert definition.optional_input_keys == ("hints", "previousAttempt")
        assert definition.output_keys == ("domain", "constraints", "requirements", "detectedPatterns")
        assert definition.state is S.DISCOVERING

    @pytest.mark.unit
    def test_ordered_definitions_follow_canonical_order(self, registry: PhaseRegistry):
        ordered = registry.get_ordered_definitions()
        assert [d.id for d in ordered] == list(PHASE_ORDER)
        assert [d.order for d in ordered] == [0, 1, 2, 3, 4]

    @pytest.mark.unit
    def test_each_phase_bound_to_own_state(self, registry: PhaseRegistry):
        states = [registry.get_state_for_phase(p) for p in PHASE_ORDER]
        assert states == [S.DISCOVERING, S.ELICITING, S.BLUEPRINTING, S.GENERATING, S.INTEGRATING]

    @pytest.mark.unit
    def test_get_all_definitions_is_a_copy(self, registry: PhaseRegistry):
        everything = registry.get_all_definitions()
        everything.pop(Phase.DISCOVER)
        assert Phase.DISCOVER in registry.get_all_definitions()


# ---------------------------------------------------------------------------
# Navigation
# ---------------------------------------------------------------------------

class TestNavigation:
    @pytest.mark.unit
    def test_next_phase(self, registry: PhaseRegistry):
        assert registry.get_next_phase(Phase.DISCOVER) is Phase.ELICIT
        assert registry.get_next_phase(Phase.INTEGRATE) is None

    @pytest.mark.unit
    def test_previous_phase(self, registry: PhaseRegistry):
        assert registry.get_previous_phase(Phase.ELICIT) is Phase.DISCOVER
        assert registry.get_previous_phase(Phase.DISCOVER) is None

    @pytest.mark.unit
    def test_first_and_last(self, registry: PhaseRegistry):
        assert registry.is_first_phase(Phase.DISCOVER)
        assert not registry.is_first_phase(Phase.BLUEPRINT)
        assert registry.is_last_phase(Phase.INTEGRATE)
        assert not registry.is_last_phase(Phase.GENERATE)

    @pytest.mark.unit
    def test_navigation_unknown_phase(self, registry: PhaseRegistry):
        with pytest.raises(UnknownPhaseError):
            registry.get_next_phase("VALIDATE")


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

class TestTransitions:
    @pytest.mark.unit
    def test_matrix_matches_table(self):
        assert {k: set(v) for k, v in TRANSITIONS.items()} == EXPECTED_TRANSITIONS

    @pytest.mark.unit
    def test_every_pair(self, registry: PhaseRegistry):
        for source, target in itertools.product(S, S):
            result = registry.validate_transition(source, target)
            if target in EXPECTED_TRANSITIONS[source]:
                assert result.valid, (source, target)
                assert result.reason is None
            else:
                assert not result.valid, (source, target)
                assert result.reason

    @pytest.mark.unit
    def test_rejection_lists_valid_targets(self, registry: PhaseRegistry):
        result = registry.validate_transition("COMPLETE", "DISCOVERING")
        assert "IDLE" in result.reason

    @pytest.mark.unit
    def test_unknown_states_never_raise(self, registry: PhaseRegistry):
        assert not registry.validate_transition("BOGUS", "IDLE").valid
        assert "source" in registry.validate_transition("BOGUS", "IDLE").reason
        assert "target" in registry.validate_transition("IDLE", "BOGUS").reason
        assert not registry.is_valid_transition("IDLE", None)

    @pytest.mark.unit
    def test_valid_transitions_in_declaration_order(self, registry: PhaseRegistry):
        assert registry.get_valid_transitions(S.IDLE) == [S.DISCOVERING, S.ERROR]
        assert registry.get_valid_transitions("BOGUS") == []


# ---------------------------------------------------------------------------
# Contract validation
# ---------------------------------------------------------------------------

class TestInputValidation:
    @pytest.mark.unit
    def test_missing_required(self, registry: PhaseRegistry):
        result = registry.validate_phase_input(Phase.ELICIT, {"domain": "api"})
        assert not result.valid
        assert result.missing == ["requirements"]

    @pytest.mark.unit
    def test_presence_counts_falsy_values(self, registry: PhaseRegistry):
        result = registry.validate_phase_input(Phase.ELICIT, {"domain": None, "requirements": []})
        assert result.valid
        assert result.missing == []

    @pytest.mark.unit
    def test_reports_present_optional_keys(self, registry: PhaseRegistry):
        result = registry.validate_phase_input(
            Phase.DISCOVER, {"userInput": "", "hints": 0}
        )
        assert result.valid
        assert result.optional == ["hints"]

    @pytest.mark.unit
    def test_none_context(self, registry: PhaseRegistry):
        result = registry.validate_phase_input(Phase.DISCOVER, None)
        assert result.missing == ["userInput"]


class TestOutputValidation:
    @pytest.mark.unit
    def test_complete_output(self, registry: PhaseRegistry):
        output = {"generatedFiles": [], "generationReport": None}
        result = registry.validate_phase_output(Phase.GENERATE, output)
        assert result.valid
        assert result.produced == ["generatedFiles", "generationReport"]

    @pytest.mark.unit
    def test_missing_output(self, registry: PhaseRegistry):
        result = registry.validate_phase_output(
            Phase.DISCOVER, {"domain": "x", "constraints": [], "requirements": []}
        )
        assert not result.valid
        assert result.missing == ["detectedPatterns"]


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------

class TestSummaries:
    @pytest.mark.unit
    def test_get_summary(self, registry: PhaseRegistry):
        summary = registry.get_summary()
        assert [s["id"] for s in summary] == [p.value for p in PHASE_ORDER]
        assert summary[0]["inputs"] == ["userInput"]

    @pytest.mark.unit
    def test_format_transition_matrix(self, registry: PhaseRegistry):
        text = registry.format_transition_matrix()
        assert text.startswith("Transition Matrix:")
        assert "COMPLETE" in text
        assert "-> [IDLE]" in text

    @pytest.mark.unit
    def test_print_summary(self, registry: PhaseRegistry, capsys):
        registry.print_summary()
        assert "Pipeline Phases" in capsys.readouterr().out

    @pytest.mark.unit
    def test_registry_shareable_between_orchestrators(self, registry: PhaseRegistry):
        from scaffoldflow.orchestrator import Orchestrator

        first, second = Orchestrator(registry), Orchestrator(registry)
        assert first.registry is second.registry
