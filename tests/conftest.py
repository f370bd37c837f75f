import pytest

import workpilot.persistence as persistence
from workpilot.budget import InMemoryBudgetGuard
from workpilot.contracts import AgentProfile, AISettings, TriggerEntity
from workpilot.engine import WorkflowEngine
from workpilot.inbox import InMemoryApprovalInbox
from workpilot.persistence import InMemoryWorkflowStateRepository
from workpilot.workflows import default_definitions


class FakeProvider:
    """Returns canned completions in order and records prompts."""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.prompts = []

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.responses:
            return self.responses.pop(0)
        return "no json here"


@pytest.fixture(autouse=True)
def _reset_repository():
    persistence.reset_repository()
    yield
    persistence.reset_repository()


@pytest.fixture
def settings():
    return AISettings(team_id="team-1", auto_approval_threshold=0.8)


@pytest.fixture
def agent():
    return AgentProfile(id="agent-1", name="PM Copilot")


@pytest.fixture
def work_order_trigger():
    return TriggerEntity(
        entity_type="work_order",
        entity_id="wo-42",
        team_id="team-1",
        parameters={
            "work_order_id": "wo-42",
            "work_order": {
                "title": "Website Redesign",
                "description": "Refresh the marketing site",
                "acceptance_criteria": ["Responsive layout", "Lighthouse score above 90"],
            },
        },
        project_context={"name": "Acme Web", "budget_hours": 100, "actual_hours": 95},
        client_context={"name": "Acme Corp"},
        org_context={"name": "Studio"},
    )


@pytest.fixture
def make_engine(settings):
    def _make(**kwargs):
        kwargs.setdefault("repository", InMemoryWorkflowStateRepository())
        kwargs.setdefault("definitions", default_definitions())
        kwargs.setdefault("settings", [settings])
        kwargs.setdefault("inbox", InMemoryApprovalInbox())
        kwargs.setdefault("budget_guard", InMemoryBudgetGuard())
        return WorkflowEngine(**kwargs)

    return _make


@pytest.fixture
def fake_provider():
    """Factory for ``FakeProvider`` instances."""
    return FakeProvider
