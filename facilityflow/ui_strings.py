from __future__ import annotations

from typing import Dict, List


FRIENDLY_TERMS: Dict[str, str] = {
    "app_name": "FacilityFlow",
    "rfq": "Request for quote",
    "quotation": "Quotation",
    "order": "Order",
    "invoice": "Invoice",
    "contractor": "Contractor",
    "property_manager": "Property manager",
}


STATUS_GROUPS: Dict[str, List[Dict[str, str]]] = {
    "rfq": [
        {"key": "SUBMITTED", "label": "Submitted", "description": "Sent to the selected contractors."},
        {"key": "RECEIVED", "label": "Received", "description": "At least one quotation has arrived."},
        {"key": "UNDER_REVIEW", "label": "Under review", "description": "Quotations are being compared."},
        {"key": "QUOTED", "label": "Quoted", "description": "An admin quotation is waiting for a decision."},
        {"key": "APPROVED", "label": "Approved", "description": "A quotation was selected."},
        {"key": "REJECTED", "label": "Rejected", "description": "The quotation was declined."},
        {"key": "CONVERTED_TO_ORDER", "label": "Converted to order", "description": "An order was generated."},
    ],
    "quotation": [
        {"key": "DRAFT", "label": "Draft", "description": "Not yet shared."},
        {"key": "IN_PROGRESS", "label": "In progress", "description": "Being prepared by the contractor."},
        {"key": "SENT_TO_CUSTOMER", "label": "Sent", "description": "Waiting for the property manager."},
        {"key": "APPROVED", "label": "Approved", "description": "Selected by the property manager."},
        {"key": "REJECTED", "label": "Rejected", "description": "Not selected."},
    ],
    "order": [
        {"key": "SUBMITTED", "label": "Submitted", "description": "Waiting for the contractor to accept."},
        {"key": "IN_PROGRESS", "label": "In progress", "description": "Accepted and being executed."},
        {"key": "COMPLETED", "label": "Completed", "description": "Work finished."},
        {"key": "CANCELLED", "label": "Cancelled", "description": "Closed without completion."},
    ],
    "invoice": [
        {"key": "DRAFT", "label": "Draft", "description": "Not yet sent."},
        {"key": "SENT_TO_PM", "label": "Sent", "description": "Waiting for the property manager."},
        {"key": "PM_APPROVED", "label": "Approved", "description": "Approved for payment."},
        {"key": "PM_REJECTED", "label": "Rejected", "description": "Returned to the contractor."},
        {"key": "PAID", "label": "Paid", "description": "Payment recorded."},
    ],
}


MESSAGES: Dict[str, Dict[str, str]] = {
    "error": {
        "unexpected_error": "The operation could not be completed.",
        "action_invalid": "This action is not valid.",
        "validation_error": "Some of the submitted data is invalid.",
        "unauthenticated": "Authentication is required.",
        "credential_invalid": "Your session is invalid or has expired.",
        "portal_access_disabled": "Portal access is not enabled for this account.",
        "permission_denied": "You do not have permission to perform this action.",
        "not_found": "The requested record was not found.",
        "status_conflict": "The record is not in a state that allows this action.",
        "action_not_allowed_for_status": "This action is not allowed for the current status.",
        "rate_limit_exceeded": "Too many requests. Try again shortly.",
        "rfq_not_found": "RFQ not found.",
        "rfq_closed_for_quotes": "This RFQ no longer accepts quotations.",
        "rfq_already_converted": "This RFQ has already been converted to an order.",
        "rfq_quote_required": "No quotation is available for this RFQ.",
        "quotations_not_found": "No quotations found for this RFQ number.",
        "quotation_not_candidate": "The selected quotation does not belong to this RFQ.",
        "quotation_selection_required": "Choose which quotation to approve.",
        "quotation_not_found": "Quotation not found.",
        "reason_required": "A reason is required.",
        "items_required": "At least one line item is required.",
        "item_invalid": "A line item is invalid.",
        "contractors_not_found": "One or more selected contractors do not exist.",
        "email_invalid": "The email address is invalid.",
        "order_not_found": "Order not found.",
        "order_cancelled": "This order has been cancelled.",
        "invoice_not_found": "Invoice not found.",
        "attachments_required": "Please upload or provide at least one invoice attachment.",
        "amount_invalid": "The amount is invalid.",
        "duplicate_document_number": "A document with this number already exists. Try again.",
        "document_number_invalid": "The document number format is invalid.",
        "prefix_invalid": "The numbering prefix is invalid.",
        "invite_target_invalid": "The invite type does not match its target.",
        "invite_ttl_invalid": "The invite lifetime must be between 1 and 90 days.",
        "invite_not_found": "This link is invalid or has expired.",
        "invite_expired": "This link is invalid or has expired.",
        "invite_already_used": "This link is invalid or has expired.",
        "invite_type_mismatch": "This link cannot be used for this action.",
        "external_link_invalid": "This link is invalid or has expired.",
        "upload_not_allowed": "Uploads are not allowed for this link.",
        "file_name_invalid": "The file name is invalid.",
    },
    "success": {
        "rfq_created": "RFQ submitted.",
        "quotation_selected": "Quotation approved. The other quotations were rejected.",
        "order_created": "Order created.",
        "invoice_submitted": "Invoice submitted.",
    },
}


def status_keys_for_group(group: str) -> List[str]:
    return [item["key"] for item in STATUS_GROUPS.get(group, [])]


def status_items_for_group(group: str) -> List[Dict[str, str]]:
    return [dict(item) for item in STATUS_GROUPS.get(group, [])]


def status_label(group: str, status: str | None, default: str | None = None) -> str:
    for item in STATUS_GROUPS.get(group, []):
        if item["key"] == status:
            return item["label"]
    return default if default is not None else str(status or "")


def get_ui_text(key: str, default: str | None = None) -> str:
    value = FRIENDLY_TERMS.get(key)
    if value:
        return value
    return default if default is not None else key


def get_message(category: str, key: str, default: str | None = None) -> str:
    value = MESSAGES.get(category, {}).get(key)
    if value:
        return value
    if default is not None:
        return default
    return key


def error_message(key: str, default: str | None = None) -> str:
    return get_message("error", key, default)


def success_message(key: str, default: str | None = None) -> str:
    return get_message("success", key, default)
