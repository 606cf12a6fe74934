"""
Service order dialog workflow.

States: closed, form (new or editing an order), details (viewing an
order). At most one workflow is active; opening another one replaces it.
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional

CLOSED = "closed"
FORM_OPEN = "form"
DETAILS_OPEN = "details"


@dataclass(frozen=True)
class WorkflowState:
    kind: str = CLOSED
    order: Optional[Dict[str, Any]] = None

    @property
    def is_open(self) -> bool:
        return self.kind != CLOSED

    @property
    def is_editing(self) -> bool:
        return self.kind == FORM_OPEN and self.order is not None

    def to_dict(self) -> dict:
        return {
            "state": self.kind,
            "order_id": self.order.get("id") if self.order else None,
            "order": self.order,
        }


class OrderWorkflow:
    def __init__(self):
        self._state = WorkflowState()

    @property
    def state(self) -> WorkflowState:
        return self._state

    @property
    def current_order(self) -> Optional[Dict[str, Any]]:
        return self._state.order

    def open_new(self) -> WorkflowState:
        self._state = WorkflowState(FORM_OPEN, None)
        return self._state

    def open_edit(self, order: Dict[str, Any]) -> WorkflowState:
        if order is None:
            raise ValueError("An order is required to edit")
        self._state = WorkflowState(FORM_OPEN, order)
        return self._state

    def open_details(self, order: Dict[str, Any]) -> WorkflowState:
        if order is None:
            raise ValueError("An order is required to view details")
        self._state = WorkflowState(DETAILS_OPEN, order)
        return self._state

    def close(self) -> WorkflowState:
        self._state = WorkflowState()
        return self._state
