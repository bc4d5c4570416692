"""Flow graph models.

Typed view over the ``nodes``/``edges`` JSON stored on ``automation_flows``.
Node and edge dicts come from the flow editor (React Flow), so unknown keys
such as ``position`` or ``style`` are accepted and ignored.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from constants import TRIGGER_NODE_TYPE
from models.database import AutomationFlow
from core.exceptions import FlowDefinitionError


class FlowNode(BaseModel):
    """One step of a flow: stable id, type tag, type-specific data bag."""
    id: str = Field(min_length=1)
    type: str = ""
    data: Dict[str, Any] = Field(default_factory=dict)

    model_config = {"extra": "ignore"}


class FlowEdge(BaseModel):
    """Directed link between two nodes.

    ``sourceHandle`` or ``label`` optionally name the branch this edge
    represents (e.g. ``"true"``/``"false"`` after a condition node).
    """
    id: Optional[str] = None
    source: str
    target: str
    source_handle: Optional[str] = Field(default=None, alias="sourceHandle")
    label: Optional[str] = None

    model_config = {"extra": "ignore", "populate_by_name": True}

    @property
    def selector(self) -> Optional[str]:
        value = self.source_handle or self.label
        if value is None:
            return None
        value = str(value).strip().lower()
        return value or None


class Flow(BaseModel):
    """Automation definition as the engine sees it."""
    id: str
    owner_id: str
    name: str = ""
    is_active: bool = False
    trigger_type: Optional[str] = None
    trigger_config: Dict[str, Any] = Field(default_factory=dict)
    nodes: List[FlowNode] = Field(default_factory=list)
    edges: List[FlowEdge] = Field(default_factory=list)

    @classmethod
    def from_record(cls, record: AutomationFlow) -> "Flow":
        return cls(
            id=record.id,
            owner_id=record.owner_id,
            name=record.name,
            is_active=record.is_active,
            trigger_type=record.trigger_type,
            trigger_config=record.trigger_config or {},
            nodes=record.nodes or [],
            edges=record.edges or [],
        )

    def get_node(self, node_id: str) -> Optional[FlowNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def trigger_node(self) -> Optional[FlowNode]:
        for node in self.nodes:
            if node.type == TRIGGER_NODE_TYPE:
                return node
        return None

    def outgoing_edges(self, node_id: str) -> List[FlowEdge]:
        """Edges leaving ``node_id`` in definition order."""
        return [edge for edge in self.edges if edge.source == node_id]

    def validate_graph(self) -> None:
        """Check the structural invariants of a flow definition.

        Raises:
            FlowDefinitionError: if there is not exactly one trigger node,
                node ids repeat, or an edge points at a missing node.
        """
        triggers = [node for node in self.nodes if node.type == TRIGGER_NODE_TYPE]
        if len(triggers) != 1:
            raise FlowDefinitionError(
                f"Flow {self.id} must have exactly one trigger node, found {len(triggers)}"
            )

        node_ids = [node.id for node in self.nodes]
        if len(node_ids) != len(set(node_ids)):
            raise FlowDefinitionError(f"Flow {self.id} has duplicate node ids")

        known = set(node_ids)
        for edge in self.edges:
            if edge.source not in known or edge.target not in known:
                raise FlowDefinitionError(
                    f"Flow {self.id} has an edge {edge.source} -> {edge.target} referencing an unknown node"
                )
            if edge.target == triggers[0].id:
                raise FlowDefinitionError(f"Flow {self.id} has an edge into its trigger node")
