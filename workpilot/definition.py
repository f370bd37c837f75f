"""Workflow definitions: nodes, branches and the transitions between them."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
)

from pydantic import BaseModel, ConfigDict

from .conditions import ConditionEvaluator
from .constants import TERMINAL_NODE
from .context import AgentContext, ChainContext

if TYPE_CHECKING:
    from .budget import BudgetGuard
    from .contracts import AgentProfile, AISettings
    from .gateway import ToolGateway
    from .inbox import ApprovalInbox
    from .persistence.models import WorkflowState
    from .providers import TextGenerationProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StepContext:
    """Everything a node handler may read.

    ``state`` is a snapshot; handlers return their output instead of
    mutating it.
    """

    state: "WorkflowState"
    chain: ChainContext
    agent_context: AgentContext
    settings: "AISettings"
    agent: Optional["AgentProfile"] = None
    provider: Optional["TextGenerationProvider"] = None
    gateway: Optional["ToolGateway"] = None
    inbox: Optional["ApprovalInbox"] = None
    budget_guard: Optional["BudgetGuard"] = None

    @property
    def input(self) -> Dict[str, Any]:
        return self.state.state_data.input

    @property
    def results(self) -> Dict[str, Any]:
        return self.state.state_data.results

    @property
    def approval_data(self) -> Optional[Dict[str, Any]]:
        return self.state.state_data.approval_data

    def output_of(self, node_id: str) -> Dict[str, Any]:
        return self.state.state_data.outputs.get(node_id, {})

    async def generate(self, prompt: str) -> Optional[str]:
        """Call the provider, or return ``None`` when none is configured."""
        if self.provider is None:
            return None
        return await self.provider.generate(prompt)


Handler = Callable[[StepContext], Awaitable[Dict[str, Any]]]
SuggestionExtractor = Callable[[Mapping[str, Any]], Sequence[Any]]


class BranchAction(str, Enum):
    GOTO = "goto"
    SKIP = "skip"
    TERMINATE = "terminate"


class Branch(BaseModel):
    """Conditional transition out of a node.

    A branch without ``condition`` always matches and acts as a default.
    """

    model_config = ConfigDict(frozen=True)

    condition: Optional[str] = None
    action: BranchAction = BranchAction.GOTO
    target: Optional[str] = None


class NodeSpec(BaseModel):
    """One node of a workflow graph."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    id: str
    handler: Handler
    next: str = TERMINAL_NODE
    branches: Tuple[Branch, ...] = ()
    checkpoint: bool = False
    pause_reason: Optional[str] = None
    approval_title: Optional[str] = None
    suggestions: Optional[SuggestionExtractor] = None
    on_reject: str = TERMINAL_NODE
    estimated_cost: float = 0.0
    result_keys: Tuple[str, ...] = ()
    producer_id: Optional[str] = None


@dataclass
class WorkflowDefinition:
    """An ordered set of nodes keyed by id.

    The registry is built once here; node ids must be unique and every
    transition target must name a node or the terminal sentinel.
    """

    workflow_type: str
    nodes: List[NodeSpec]
    description: str = ""
    start_node: Optional[str] = None
    _registry: Dict[str, NodeSpec] = field(init=False, repr=False)
    _order: List[str] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if not self.nodes:
            raise ValueError(f"Workflow {self.workflow_type} has no nodes")
        self._registry = {}
        self._order = []
        for node in self.nodes:
            if node.id in self._registry or node.id == TERMINAL_NODE:
                raise ValueError(f"Duplicate or reserved node id {node.id!r}")
            self._registry[node.id] = node
            self._order.append(node.id)
        if self.start_node is None:
            self.start_node = self._order[0]
        for node in self.nodes:
            targets = [node.next, node.on_reject] + [
                b.target for b in node.branches if b.action == BranchAction.GOTO
            ]
            for target in targets:
                if target is None or (target != TERMINAL_NODE and target not in self._registry):
                    raise ValueError(
                        f"Node {node.id!r} in {self.workflow_type} points at unknown node {target!r}"
                    )
        if self.start_node not in self._registry:
            raise ValueError(f"Unknown start node {self.start_node!r}")

    def get_node(self, node_id: str) -> Optional[NodeSpec]:
        return self._registry.get(node_id)

    def step_index(self, node_id: str) -> int:
        """Zero-based position of the node; used as its ChainContext step index."""
        return self._order.index(node_id)

    @property
    def node_ids(self) -> List[str]:
        return list(self._order)

    def _after(self, node_id: str) -> str:
        if node_id == TERMINAL_NODE:
            return TERMINAL_NODE
        return self._registry[node_id].next

    def next_node(
        self, node: NodeSpec, chain: ChainContext, evaluator: ConditionEvaluator
    ) -> str:
        """First matching branch wins; otherwise the static successor."""
        for branch in node.branches:
            if branch.condition is not None and not evaluator.evaluate(branch.condition, chain):
                continue
            if branch.action == BranchAction.TERMINATE:
                target = TERMINAL_NODE
            elif branch.action == BranchAction.SKIP:
                target = self._after(node.next)
            else:
                target = branch.target or TERMINAL_NODE
            logger.info(
                f"Branch {branch.action.value} from {node.id} to {target}"
                + (f" on '{branch.condition}'" if branch.condition else "")
            )
            return target
        return node.next
