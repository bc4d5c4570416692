"""Automation engine exception hierarchy."""


class AutomationError(Exception):
    """Base exception for all automation engine errors."""


class FlowDefinitionError(AutomationError):
    """A flow definition violates a structural invariant."""


class TriggerConfigError(AutomationError):
    """A flow's trigger configuration cannot be evaluated."""

    def __init__(self, flow_id: str, message: str):
        self.flow_id = flow_id
        super().__init__(f"[{flow_id}] {message}")


class ExecutionNotFoundError(AutomationError):
    """No execution exists with the given id."""

    def __init__(self, execution_id: str):
        self.execution_id = execution_id
        super().__init__(f"Execution {execution_id} not found")


class FlowNotFoundError(AutomationError):
    """No flow exists with the given id."""

    def __init__(self, flow_id: str):
        self.flow_id = flow_id
        super().__init__(f"Flow {flow_id} not found")


class NodeNotFoundError(AutomationError):
    """The dispatched node id is not part of the execution's flow."""

    def __init__(self, flow_id: str, node_id: str):
        self.flow_id = flow_id
        self.node_id = node_id
        super().__init__(f"Node {node_id} not found in flow {flow_id}")


class DispatchError(AutomationError):
    """A continuation could not be handed to the dispatch transport."""

    def __init__(self, execution_id: str, node_id: str, message: str):
        self.execution_id = execution_id
        self.node_id = node_id
        super().__init__(f"Dispatch of {execution_id}/{node_id} failed: {message}")
