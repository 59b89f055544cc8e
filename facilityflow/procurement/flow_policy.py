from __future__ import annotations

from typing import Dict, List


PROCESS_STAGES: List[Dict[str, str]] = [
    {"key": "rfq", "label": "Request for quote"},
    {"key": "quotation", "label": "Quotation"},
    {"key": "order", "label": "Order"},
    {"key": "invoice", "label": "Invoice"},
]


ACTION_LABELS: Dict[str, str] = {
    "submit_quote": "Submit quotation",
    "record_admin_quote": "Record admin quotation",
    "start_review": "Start review",
    "compare_quotes": "Compare quotations",
    "select_quote": "Select quotation",
    "approve": "Approve",
    "reject": "Reject",
    "convert_to_order": "Convert to order",
    "view_order": "Open order",
    "view_history": "View history",
    "accept_order": "Accept order",
    "complete_order": "Complete order",
    "create_invoice": "Create invoice",
    "cancel_order": "Cancel order",
    "approve_invoice": "Approve invoice",
    "reject_invoice": "Reject invoice",
    "mark_paid": "Mark as paid",
}


FLOW_POLICY: Dict[str, Dict[str, Dict[str, object]]] = {
    "rfq": {
        "SUBMITTED": {
            "allowed_actions": ["submit_quote", "record_admin_quote", "view_history"],
            "primary_action": "submit_quote",
        },
        "RECEIVED": {
            "allowed_actions": ["submit_quote", "record_admin_quote", "start_review", "compare_quotes", "view_history"],
            "primary_action": "start_review",
        },
        "UNDER_REVIEW": {
            "allowed_actions": ["submit_quote", "record_admin_quote", "compare_quotes", "select_quote", "view_history"],
            "primary_action": "select_quote",
        },
        "QUOTED": {
            "allowed_actions": ["approve", "reject", "compare_quotes", "view_history"],
            "primary_action": "approve",
        },
        "APPROVED": {
            "allowed_actions": ["convert_to_order", "view_history"],
            "primary_action": "convert_to_order",
        },
        "REJECTED": {
            "allowed_actions": ["view_history"],
            "primary_action": "view_history",
        },
        "CONVERTED_TO_ORDER": {
            "allowed_actions": ["view_order", "view_history"],
            "primary_action": "view_order",
        },
    },
    "quotation": {
        "DRAFT": {
            "allowed_actions": ["view_history"],
            "primary_action": "view_history",
        },
        "IN_PROGRESS": {
            "allowed_actions": ["view_history"],
            "primary_action": "view_history",
        },
        "SENT_TO_CUSTOMER": {
            "allowed_actions": ["select_quote", "view_history"],
            "primary_action": "select_quote",
        },
        "APPROVED": {
            "allowed_actions": ["select_quote", "view_history"],
            "primary_action": "view_history",
        },
        "REJECTED": {
            "allowed_actions": ["select_quote", "view_history"],
            "primary_action": "view_history",
        },
    },
    "order": {
        "SUBMITTED": {
            "allowed_actions": ["accept_order", "cancel_order", "view_order"],
            "primary_action": "accept_order",
        },
        "IN_PROGRESS": {
            "allowed_actions": ["complete_order", "create_invoice", "cancel_order", "view_order"],
            "primary_action": "complete_order",
        },
        "COMPLETED": {
            "allowed_actions": ["create_invoice", "view_order", "view_history"],
            "primary_action": "create_invoice",
        },
        "CANCELLED": {
            "allowed_actions": ["view_history"],
            "primary_action": "view_history",
        },
    },
    "invoice": {
        "DRAFT": {
            "allowed_actions": ["view_history"],
            "primary_action": "view_history",
        },
        "SENT_TO_PM": {
            "allowed_actions": ["approve_invoice", "reject_invoice", "view_history"],
            "primary_action": "approve_invoice",
        },
        "PM_APPROVED": {
            "allowed_actions": ["mark_paid", "view_history"],
            "primary_action": "mark_paid",
        },
        "PM_REJECTED": {
            "allowed_actions": ["view_history"],
            "primary_action": "view_history",
        },
        "PAID": {
            "allowed_actions": ["view_history"],
            "primary_action": "view_history",
        },
    },
}


RFQ_ACTIONS: Dict[str, str] = {
    "START_REVIEW": "start_review",
    "APPROVE": "approve",
    "REJECT": "reject",
    "CONVERT_TO_ORDER": "convert_to_order",
}

INVOICE_ACTIONS: Dict[str, str] = {
    "APPROVE": "approve_invoice",
    "REJECT": "reject_invoice",
    "MARK_PAID": "mark_paid",
}

# Target status of each guarded transition.
TRANSITIONS: Dict[str, Dict[str, str]] = {
    "rfq": {
        "start_review": "UNDER_REVIEW",
        "approve": "APPROVED",
        "reject": "REJECTED",
        "select_quote": "APPROVED",
        "convert_to_order": "CONVERTED_TO_ORDER",
    },
    "order": {
        "accept_order": "IN_PROGRESS",
        "complete_order": "COMPLETED",
        "cancel_order": "CANCELLED",
    },
    "invoice": {
        "approve_invoice": "PM_APPROVED",
        "reject_invoice": "PM_REJECTED",
        "mark_paid": "PAID",
    },
}

QUOTABLE_RFQ_STATUSES = frozenset({"SUBMITTED", "RECEIVED", "UNDER_REVIEW"})
CANDIDATE_QUOTATION_STATUSES = frozenset({"SENT_TO_CUSTOMER", "APPROVED", "REJECTED"})
COMPARABLE_RFQ_STATUSES = frozenset({"RECEIVED", "UNDER_REVIEW", "QUOTED"})


def _fallback_policy() -> Dict[str, object]:
    return {"allowed_actions": [], "primary_action": None}


def status_policy(stage: str, status: str | None) -> Dict[str, object]:
    if not status:
        return _fallback_policy()
    return FLOW_POLICY.get(stage, {}).get(str(status), _fallback_policy())


def allowed_actions(stage: str, status: str | None) -> List[str]:
    actions = status_policy(stage, status).get("allowed_actions") or []
    if not isinstance(actions, list):
        return []
    return [str(action) for action in actions]


def primary_action(stage: str, status: str | None) -> str | None:
    action = status_policy(stage, status).get("primary_action")
    if not action:
        return None
    return str(action)


def action_allowed(stage: str, status: str | None, action: str) -> bool:
    if not action:
        return False
    return action in set(allowed_actions(stage, status))


def target_status(stage: str, action: str) -> str | None:
    return TRANSITIONS.get(stage, {}).get(action)


def action_label(action: str, fallback: str | None = None) -> str:
    label = ACTION_LABELS.get(action)
    if label:
        return label
    if fallback is not None:
        return fallback
    return action


def flow_meta(stage: str, status: str | None) -> Dict[str, object]:
    return {
        "allowed_actions": allowed_actions(stage, status),
        "primary_action": primary_action(stage, status),
    }
