"""
OpenAPI schema customizations for drf-spectacular.

This module provides hooks to customize the generated OpenAPI schema,
including tag groupings for better documentation organization in ReDoc.

Tag naming follows the pattern: [App Name] - [Group Name]
Examples:
- Auth (JWT token endpoints)
- Payments - Charges (card charges)
- Payments - Ledger (payment reads)
- Payments - Reconciliation (refund sync)
- Payments - Configuration (processor management)
- Refunds (requests, decisions, listings)
"""

# Natural language summaries for simplejwt endpoints
# Maps operation_id to (summary, description)
JWT_SUMMARIES = {
    "auth_token_create": (
        "Obtain tokens",
        "Authenticate with email and password to receive JWT access and refresh tokens.",
    ),
    "auth_token_refresh_create": (
        "Refresh access token",
        "Get a new access token using a valid refresh token.",
    ),
}

TAG_DESCRIPTIONS = [
    {
        "name": "Auth",
        "description": "JWT token issue and refresh.",
    },
    {
        "name": "Payments - Charges",
        "description": "Charge a card token through the active processor and record the payment.",
    },
    {
        "name": "Payments - Ledger",
        "description": "Payment details, refund eligibility and listings. Parents only see their own payments.",
    },
    {
        "name": "Payments - Reconciliation",
        "description": "Import refunds issued from processor dashboards into the ledger.",
    },
    {
        "name": "Payments - Configuration",
        "description": "Processor accounts, the default processor and connectivity checks.",
    },
    {
        "name": "Refunds",
        "description": "Refund requests, admin approve/reject decisions and refund listings.",
    },
]


def group_api_endpoints(result, generator, request, public):
    """
    Postprocessing hook to group API endpoints by function.

    Payment views set their tags with tags= in @extend_schema; this hook
    tags the simplejwt endpoints, adds their summaries and publishes the
    tag descriptions.
    """
    paths = result.get("paths", {})

    for path, methods in paths.items():
        for method, operation in methods.items():
            if not isinstance(operation, dict):
                continue

            operation_id = operation.get("operationId", "")

            if operation_id in JWT_SUMMARIES:
                summary, description = JWT_SUMMARIES[operation_id]
                operation["summary"] = summary
                operation["description"] = description

            if operation_id.startswith("auth_"):
                operation["tags"] = ["Auth"]

    result["tags"] = TAG_DESCRIPTIONS
    return result
