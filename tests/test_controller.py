"""Tests for controller.py - one-turn orchestration.

These tests verify:
1. The CONTACT/booking conversation end to end (EXECUTE, RETRY, BROADEN,
   gate unlock, COMPLETE)
2. Retry policy outcomes: HANDOFF, SKIP/DEADLOCK, CLARIFY, cooldown
3. Stagnation escalation
4. Post-goal behavior
5. run_turn never mutates its input and facts only ever grow
"""

import logging

import pytest

from flowctl.config.runtime_config import ControllerSettings, PostGoalPolicy
from flowctl.runtime.controller import DirectiveComposer, ReadinessDelta
from flowctl.runtime.types import ControllerPhase, Mode, TurnStatus
from flowctl.spec.types import OnExhaust


def _cleanup_definition():
    """Goal is reached by 'ask'; 'survey' is a HIGH-importance extra."""
    return {
        "flowId": "cleanup",
        "entryNodeIds": ["ask"],
        "primaryGoal": {"type": "GATE", "gate": "CONTACT"},
        "gateDefinitions": {"CONTACT": {"satisfiedBy": {"metricsAll": ["email"]}}},
        "nodes": [
            {"id": "ask", "produces": {"facts": ["email"]}},
            {
                "id": "survey",
                "title": "Rate us",
                "produces": {"facts": ["rating"]},
                "config": {"importance": "HIGH"},
            },
        ],
    }


class TestContactConversation:
    """The booking flow from first question to COMPLETE."""

    def test_full_conversation(self, make_driver, contact_flow):
        driver = make_driver(contact_flow)

        first = driver.turn("hi")
        assert first.status is TurnStatus.OK
        assert first.node.decision is Mode.EXECUTE
        assert first.node.selected_node_id == "contact-1"
        assert first.node.agent_message == "[EXECUTE] contact-1: Capture contact"

        second = driver.turn("not sure")
        assert second.node.decision is Mode.RETRY
        assert second.node.prompt_variant == 1
        assert second.node.agent_message.endswith("(variant 1)")

        third = driver.turn("still not sure")
        assert third.node.decision is Mode.BROADEN

        fourth = driver.turn("john@x.com")
        assert fourth.node.selected_node_id == "book-1"
        assert fourth.node.decision is Mode.EXECUTE
        assert fourth.readiness_delta == ReadinessDelta(
            added=("contact_email",), unlocked=("CONTACT",)
        )
        assert fourth.state.states == {"booked"}

        fifth = driver.turn("thanks")
        assert fifth.status is TurnStatus.COMPLETE
        assert fifth.phase is ControllerPhase.COMPLETE
        assert fifth.node.decision is None
        assert fifth.node.agent_message == "[COMPLETE]"

    def test_answer_in_first_message(self, make_driver, contact_flow):
        """Facts in the message that triggers EXECUTE are credited right away."""
        driver = make_driver(contact_flow)
        result = driver.turn("john@x.com")

        assert result.node.facts_added == ("contact_email",)
        assert result.node.gates_unlocked == ("CONTACT",)
        assert driver.turn("ok").node.selected_node_id == "book-1"
        assert driver.turn("bye").status is TurnStatus.COMPLETE

    def test_asserted_facts(self, make_driver, contact_flow):
        driver = make_driver(contact_flow)
        result = driver.turn("here you go", facts=["phone"])
        assert result.state.facts == {"contact_phone"}

    def test_asserted_fact_not_produced_by_node_is_dropped(self, make_driver, contact_flow):
        driver = make_driver(contact_flow)
        result = driver.turn("blue", facts=["favourite_color"])
        assert result.state.facts == set()

    def test_turn_log_records_every_turn(self, make_driver, contact_flow):
        driver = make_driver(contact_flow)
        driver.turn("hi")
        driver.turn("john@x.com")

        log = driver.state.turn_log
        assert [r.turn for r in log] == [1, 2]
        assert [r.selected_node_id for r in log] == ["contact-1", "book-1"]
        assert log[-1].execution_node_id == driver.results[-1].node.node_id

    def test_first_selection_restricted_to_entry_nodes(self, make_driver, contact_definition):
        """A non-entry node that is eligible at the start is not chosen first."""
        contact_definition["nodes"][1]["requires"]["facts"] = []
        driver = make_driver(contact_definition)
        assert driver.turn("hi").node.selected_node_id == "contact-1"


class TestRetryPolicyOutcomes:
    def test_handoff(self, make_driver, single_node):
        driver = make_driver(single_node({"maxAttempts": 1, "onExhaust": "HANDOFF"}))
        driver.turn("hi")
        result = driver.turn("no")

        assert result.status is TurnStatus.HANDOFF
        assert result.node.decision is Mode.HANDOFF
        assert result.state.awaiting_reply_node is None

    def test_skip_leads_to_deadlock(self, make_driver, single_node, caplog):
        driver = make_driver(single_node({"maxAttempts": 1, "onExhaust": "SKIP"}))
        driver.turn("hi")
        with caplog.at_level(logging.WARNING, logger="flowctl.runtime.controller"):
            result = driver.turn("no")

        assert result.status is TurnStatus.DEADLOCK
        assert result.phase is ControllerPhase.DEADLOCK
        assert result.skipped_node_ids == ["ask"]
        assert result.node.selected_node_id is None
        assert "Deadlock" in caplog.text

    def test_clarify_grants_one_extra_retry(self, make_driver, single_node):
        driver = make_driver(single_node({"maxAttempts": 1, "onExhaust": "CLARIFY"}))
        driver.turn("hi")

        clarify = driver.turn("what?")
        assert clarify.node.decision is Mode.RETRY
        assert "clarifying" in clarify.node.reasoning
        assert clarify.state.clarified_nodes == {"ask"}

        assert driver.turn("still no").status is TurnStatus.DEADLOCK

    def test_cooldown_delays_retry(self, make_driver, single_node):
        driver = make_driver(single_node({"maxAttempts": 3, "cooldownTurns": 1}))
        assert driver.turn("hi").node.decision is Mode.EXECUTE
        assert driver.turn("no").node.decision is Mode.RETRY
        assert driver.turn("no").status is TurnStatus.DEADLOCK
        assert driver.turn("no").node.decision is Mode.RETRY

    def test_reply_after_retry_is_credited(self, make_driver, single_node):
        driver = make_driver(single_node({"maxAttempts": 3}))
        driver.turn("hi")
        driver.turn("no")
        result = driver.turn("john@x.com")

        assert result.readiness_delta.added == ("contact_email",)
        assert result.status is TurnStatus.COMPLETE

    def test_prompt_variants_rotate(self, make_driver, single_node):
        driver = make_driver(single_node({"maxAttempts": 5}))
        variants = [driver.turn("no").node.prompt_variant for _ in range(4)]
        assert variants == [0, 1, 2, 0]

    def test_fixed_prompt_variant(self, make_driver, single_node):
        driver = make_driver(single_node({"maxAttempts": 5, "promptVariantStrategy": "FIXED"}))
        assert {driver.turn("no").node.prompt_variant for _ in range(4)} == {0}


class TestStagnation:
    def test_escalation_to_broaden_then_handoff(self, make_driver, single_node):
        driver = make_driver(
            single_node({"maxAttempts": 10}),
            settings=ControllerSettings(stagnation_threshold=2),
        )
        modes = [driver.turn("no").node.decision for _ in range(4)]

        assert modes == [Mode.EXECUTE, Mode.RETRY, Mode.BROADEN, Mode.HANDOFF]
        assert driver.results[-1].status is TurnStatus.HANDOFF
        assert "stagnation" in driver.results[2].node.reasoning

    def test_progress_avoids_escalation(self, make_driver, contact_flow):
        driver = make_driver(contact_flow, settings=ControllerSettings(stagnation_threshold=2))
        driver.turn("hi")
        result = driver.turn("john@x.com")
        assert result.status is TurnStatus.OK
        assert "stagnation" not in result.node.reasoning

    def test_turn_without_selection_breaks_the_streak(self, make_driver, single_node):
        driver = make_driver(
            single_node({"maxAttempts": 50, "cooldownTurns": 1}),
            settings=ControllerSettings(stagnation_threshold=2),
        )
        results = [driver.turn("no") for _ in range(6)]

        assert [r.node.decision for r in results] == [
            Mode.EXECUTE, Mode.RETRY, None, Mode.RETRY, None, Mode.RETRY,
        ]
        assert [r.status for r in results[2:4]] == [TurnStatus.DEADLOCK, TurnStatus.OK]
        assert results[2].state.streak == 0
        assert results[3].state.streak == 1
        assert all("stagnation" not in r.node.reasoning for r in results)


class TestPostGoal:
    def test_stop_by_default(self, make_driver):
        driver = make_driver(_cleanup_definition())
        driver.turn("john@x.com")
        assert driver.turn("bye").status is TurnStatus.COMPLETE

    def test_high_importance_cleanup(self, make_driver):
        settings = ControllerSettings(
            post_goal_policy=PostGoalPolicy.HIGH_IMPORTANCE_CLEANUP,
            post_goal_max_turns=1,
        )
        driver = make_driver(_cleanup_definition(), settings=settings)
        driver.turn("john@x.com")

        cleanup = driver.turn("sure")
        assert cleanup.status is TurnStatus.OK
        assert cleanup.node.selected_node_id == "survey"
        assert cleanup.state.post_goal_turns == 1

        assert driver.turn("5 stars").status is TurnStatus.COMPLETE


class TestPurity:
    def test_input_state_not_mutated(self, make_controller, contact_flow):
        controller = make_controller(contact_flow)
        state = controller.initial_state()
        before = state.to_dict()

        result = controller.run_turn(
            state,
            parent_node_id=None,
            branch_id="main",
            turn_number=1,
            user_message="john@x.com",
        )

        assert state.to_dict() == before
        assert result.state is not state
        assert result.state.facts == {"contact_email"}

    def test_facts_never_shrink(self, make_driver, contact_flow):
        driver = make_driver(contact_flow)
        for message in ("hi", "john@x.com", "+1 555 123 4567", "bye"):
            result = driver.turn(message)
            assert result.node.known_facts_before <= result.node.known_facts_after

    def test_max_executions_is_respected(self, make_driver, contact_definition):
        """book-1 runs at most once even when the goal is never reached."""
        contact_definition["nodes"][1]["config"]["satisfies"] = {}
        contact_definition["primaryGoal"] = {"type": "STATE", "state": "never"}
        contact_definition["nodes"].append(
            {"id": "finish", "config": {"satisfies": {"states": ["never"]}, "requiresStates": ["x"]}}
        )
        driver = make_driver(contact_definition)
        driver.turn("john@x.com")
        for _ in range(3):
            driver.turn("again")

        assert driver.state.executions("book-1") == 1

    def test_initial_facts_are_aliased(self, make_controller, contact_flow):
        state = make_controller(contact_flow).initial_state(["email"])
        assert state.facts == {"contact_email"}
        assert state.gates_satisfied == {"CONTACT"}


class TestDirectiveComposer:
    def test_no_node(self):
        assert DirectiveComposer().compose(None, None, TurnStatus.DEADLOCK, 0) == "[DEADLOCK]"

    def test_custom_composer_is_used(self, make_controller, contact_flow):
        class Echo:
            def compose(self, node, mode, status, prompt_variant):
                return f"{status.value}:{node.id if node else '-'}"

        controller = make_controller(contact_flow, composer=Echo())
        result = controller.run_turn(
            controller.initial_state(),
            parent_node_id=None,
            branch_id="main",
            turn_number=1,
            user_message="hi",
        )
        assert result.node.agent_message == "OK:contact-1"


@pytest.mark.parametrize("on_exhaust", [OnExhaust.BROADEN, OnExhaust.HANDOFF])
def test_exhaust_modes_prompt_or_terminate(make_driver, single_node, on_exhaust):
    driver = make_driver(single_node({"maxAttempts": 1, "onExhaust": on_exhaust.value}))
    driver.turn("hi")
    result = driver.turn("no")
    expected = TurnStatus.HANDOFF if on_exhaust is OnExhaust.HANDOFF else TurnStatus.OK
    assert result.status is expected
