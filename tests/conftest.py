"""
Test fixtures for the flow controller.

Provides flow definitions (the CONTACT/booking flow used by the end-to-end
scenarios, plus small single-purpose flows), compiled models, controllers and
run services wired with a deterministic pattern extractor.
"""

import asyncio
from typing import Any, Dict, Iterable, List, Optional

import pytest
from fastapi.testclient import TestClient

from flowctl.config.runtime_config import ControllerSettings, reset_config
from flowctl.runtime.controller import Controller, TurnResult
from flowctl.runtime.fact_extraction import PatternFactExtractor
from flowctl.runtime.service import RunService
from flowctl.runtime.state import RuntimeState
from flowctl.spec.compiler import compile_flow

EMAIL_PATTERN = r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}"
PHONE_PATTERN = r"\+?\d[\d\s().-]{6,}\d"

CONFIG_ENV_VARS = (
    "FLOWCTL_STAGNATION_THRESHOLD",
    "FLOWCTL_POST_GOAL_POLICY",
    "FLOWCTL_POST_GOAL_MAX_TURNS",
    "FLOWCTL_ALTERNATE_LABEL_CHARS",
)


# ============================================================================
# Isolation
# ============================================================================


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch):
    """Clear FLOWCTL_* overrides and the config cache around every test."""
    for var in CONFIG_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    reset_config()
    yield
    reset_config()


# ============================================================================
# Flow definitions
# ============================================================================


def contact_flow_definition() -> Dict[str, Any]:
    """CONTACT gate + booking flow.

    contact-1 asks for an email or phone (aliased to contact_email /
    contact_phone); book-1 requires CONTACT and reaches the goal state.
    """
    return {
        "flowId": "contact",
        "version": "1",
        "entryNodeIds": ["contact-1"],
        "primaryGoal": {"type": "STATE", "state": "booked", "description": "Book a call"},
        "gateDefinitions": {
            "CONTACT": {"satisfiedBy": {"metricsAny": ["contact_email", "contact_phone"]}},
        },
        "factAliases": {"email": "contact_email", "phone": "contact_phone"},
        "nodes": [
            {
                "id": "contact-1",
                "type": "QUESTION",
                "title": "Capture contact",
                "produces": {"facts": ["email", "phone"]},
                "config": {
                    "retryPolicy": {"maxAttempts": 2, "onExhaust": "BROADEN"},
                    "satisfies": {"gates": ["CONTACT"]},
                },
            },
            {
                "id": "book-1",
                "type": "ACTION",
                "title": "Book the call",
                "requires": {"facts": ["CONTACT"]},
                "config": {
                    "runPolicy": {"maxExecutions": 1},
                    "satisfies": {"states": ["booked"]},
                },
            },
        ],
        "edges": [{"id": "e1", "source": "contact-1", "target": "book-1"}],
    }


def single_node_definition(retry_policy: Dict[str, Any], **config: Any) -> Dict[str, Any]:
    """One question node 'ask' that can only be satisfied by an email."""
    node_config: Dict[str, Any] = {"retryPolicy": retry_policy}
    node_config.update(config)
    return {
        "flowId": "single",
        "entryNodeIds": ["ask"],
        "primaryGoal": {"type": "GATE", "gate": "CONTACT"},
        "gateDefinitions": {"CONTACT": {"satisfiedBy": {"metricsAll": ["contact_email"]}}},
        "factAliases": {"email": "contact_email"},
        "nodes": [
            {
                "id": "ask",
                "title": "Ask for email",
                "produces": {"facts": ["email"]},
                "config": node_config,
            }
        ],
    }


@pytest.fixture
def contact_definition() -> Dict[str, Any]:
    return contact_flow_definition()


@pytest.fixture
def contact_flow(contact_definition):
    return compile_flow(contact_definition)


@pytest.fixture
def single_node():
    """Factory for the one-node flow; pass the retry policy and extra config."""
    return single_node_definition


# ============================================================================
# Runtime wiring
# ============================================================================


@pytest.fixture
def extractor() -> PatternFactExtractor:
    return PatternFactExtractor({"email": EMAIL_PATTERN, "phone": PHONE_PATTERN})


@pytest.fixture
def settings() -> ControllerSettings:
    return ControllerSettings(stagnation_threshold=10)


@pytest.fixture
def make_controller(extractor, settings):
    """Factory: Controller for a definition or compiled flow."""

    def _make(flow_or_definition, **overrides) -> Controller:
        flow = flow_or_definition
        if isinstance(flow_or_definition, dict):
            flow = compile_flow(flow_or_definition)
        return Controller(
            flow,
            extractor=overrides.pop("extractor", extractor),
            settings=overrides.pop("settings", settings),
            **overrides,
        )

    return _make


class TurnDriver:
    """Runs consecutive turns on a single lineage without a service."""

    def __init__(self, controller: Controller, initial_facts: Optional[Iterable[str]] = None):
        self.controller = controller
        self.state: RuntimeState = controller.initial_state(initial_facts)
        self.results: List[TurnResult] = []
        self._parent: Optional[str] = None

    def turn(self, message: Optional[str], facts: Optional[Iterable[str]] = None) -> TurnResult:
        result = self.controller.run_turn(
            self.state,
            parent_node_id=self._parent,
            branch_id="main",
            turn_number=len(self.results) + 1,
            user_message=message,
            asserted_facts=facts,
        )
        self.results.append(result)
        self.state = result.state
        self._parent = result.node.node_id
        return result


@pytest.fixture
def make_driver(make_controller):
    def _make(flow_or_definition, initial_facts=None, **overrides) -> TurnDriver:
        return TurnDriver(make_controller(flow_or_definition, **overrides), initial_facts)

    return _make


@pytest.fixture
def service(extractor, settings) -> RunService:
    svc = RunService(extractor=extractor, settings=settings)
    svc.register_flow(contact_flow_definition())
    return svc


@pytest.fixture
def run_sync():
    """Drive a service coroutine to completion from a sync test."""

    def _run(coro):
        return asyncio.run(coro)

    return _run


@pytest.fixture
def client(service) -> TestClient:
    from flowctl.api.server import create_app

    return TestClient(create_app(service=service))
