import pytest

from workpilot.conditions import ConditionEvaluator
from workpilot.constants import TERMINAL_NODE
from workpilot.context import ChainContext
from workpilot.definition import Branch, BranchAction, NodeSpec, WorkflowDefinition
from workpilot.workflows import default_definitions, get_definition
from workpilot.errors import ConfigurationError


async def _noop(ctx):
    return {}


def _definition(branches=()):
    return WorkflowDefinition(
        workflow_type="demo",
        nodes=[
            NodeSpec(id="score", handler=_noop, next="review", branches=branches),
            NodeSpec(id="review", handler=_noop, next="publish", checkpoint=True),
            NodeSpec(id="publish", handler=_noop),
        ],
    )


def _chain(score):
    return ChainContext().with_step_output(0, {"score": score})


def test_registry_and_start_node():
    definition = _definition()

    assert definition.start_node == "score"
    assert definition.node_ids == ["score", "review", "publish"]
    assert definition.step_index("publish") == 2
    assert definition.get_node("missing") is None


@pytest.mark.parametrize(
    "action, target, expected",
    [
        (BranchAction.SKIP, None, "publish"),
        (BranchAction.GOTO, "publish", "publish"),
        (BranchAction.TERMINATE, None, TERMINAL_NODE),
    ],
)
def test_matching_branch_decides_next_node(action, target, expected):
    definition = _definition(
        branches=(Branch(condition="steps.0.output.score >= 90", action=action, target=target),)
    )
    node = definition.get_node("score")
    evaluator = ConditionEvaluator()

    assert definition.next_node(node, _chain(95), evaluator) == expected
    assert definition.next_node(node, _chain(50), evaluator) == "review"


def test_branch_without_condition_is_default():
    definition = _definition(
        branches=(
            Branch(condition="steps.0.output.score > 99", action=BranchAction.TERMINATE),
            Branch(action=BranchAction.GOTO, target="publish"),
        )
    )
    assert definition.next_node(definition.get_node("score"), _chain(10), ConditionEvaluator()) == "publish"


def test_invalid_definitions_are_rejected():
    with pytest.raises(ValueError):
        WorkflowDefinition(workflow_type="bad", nodes=[NodeSpec(id="a", handler=_noop, next="zzz")])
    with pytest.raises(ValueError):
        WorkflowDefinition(
            workflow_type="bad",
            nodes=[NodeSpec(id="a", handler=_noop), NodeSpec(id="a", handler=_noop)],
        )
    with pytest.raises(ValueError):
        WorkflowDefinition(workflow_type="bad", nodes=[])


def test_catalogue():
    definitions = default_definitions()

    assert set(definitions) == {"pm-copilot", "dispatcher", "task-execution"}
    assert definitions["pm-copilot"].get_node("checkpoint_deliverables").checkpoint
    assert definitions["dispatcher"].step_index("route_work") == 2
    assert definitions["task-execution"].get_node("present_results").on_reject == "apply_results"
    with pytest.raises(ConfigurationError):
        get_definition("unknown")
