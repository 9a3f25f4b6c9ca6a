"""
Communication Service Routes Registry

Defines service metadata and routes for Consul registration.
"""

SERVICE_METADATA = {
    "service_name": "communication_service",
    "version": "1.0.0",
    "tags": ['communication', 'broadcast', 'reminders', 'v1'],
    "capabilities": [
        'broadcast_management',
        'broadcast_approval',
        'audience_targeting',
        'ab_testing',
        'offer_management',
        'payment_reminders',
    ],
}

ROUTES = [
    {"path": "/health", "methods": ["GET"], "description": "Health check"},
    {"path": "/api/v1/communication/health", "methods": ["GET"], "description": "Service health check (API v1)"},
    {"path": "/api/v1/broadcasts", "methods": ["GET", "POST"], "description": "List or create broadcasts"},
    {"path": "/api/v1/broadcasts/pending-approval", "methods": ["GET"], "description": "Broadcasts awaiting review"},
    {"path": "/api/v1/broadcasts/eligible-clients", "methods": ["POST"], "description": "Audience preview"},
    {"path": "/api/v1/broadcasts/{broadcast_id}", "methods": ["GET", "PUT", "DELETE"], "description": "Broadcast CRUD"},
    {"path": "/api/v1/broadcasts/{broadcast_id}/submit", "methods": ["POST"], "description": "Submit for approval"},
    {"path": "/api/v1/broadcasts/{broadcast_id}/approve", "methods": ["POST"], "description": "Approve broadcast"},
    {"path": "/api/v1/broadcasts/{broadcast_id}/reject", "methods": ["POST"], "description": "Reject broadcast"},
    {"path": "/api/v1/broadcasts/{broadcast_id}/schedule", "methods": ["POST"], "description": "Schedule broadcast"},
    {"path": "/api/v1/broadcasts/{broadcast_id}/send", "methods": ["POST"], "description": "Dispatch broadcast now"},
    {"path": "/api/v1/broadcasts/{broadcast_id}/stats", "methods": ["GET"], "description": "Delivery stats"},
    {"path": "/api/v1/broadcasts/{broadcast_id}/revenue", "methods": ["POST"], "description": "Record revenue"},
    {"path": "/api/v1/broadcasts/{broadcast_id}/history", "methods": ["GET"], "description": "Status audit trail"},
    {"path": "/api/v1/broadcasts/{broadcast_id}/recipients", "methods": ["GET"], "description": "Per-recipient outcomes"},
    {"path": "/api/v1/offers", "methods": ["GET", "POST"], "description": "List or create offers"},
    {"path": "/api/v1/offers/{offer_id}", "methods": ["GET", "PUT", "DELETE"], "description": "Offer CRUD"},
    {"path": "/api/v1/offers/{offer_id}/eligible-clients", "methods": ["GET"], "description": "Offer audience preview"},
    {"path": "/api/v1/reminders/status", "methods": ["GET"], "description": "Reminder scheduler status"},
    {"path": "/api/v1/reminders/start", "methods": ["POST"], "description": "Start reminder scheduler"},
    {"path": "/api/v1/reminders/stop", "methods": ["POST"], "description": "Stop reminder scheduler"},
    {"path": "/api/v1/reminders/trigger", "methods": ["POST"], "description": "Run one reminder scan"},
    {"path": "/api/v1/reminders/stats", "methods": ["GET"], "description": "Reminder counts by tier"},
    {"path": "/api/v1/reminders/invoices/{invoice_id}", "methods": ["GET"], "description": "Ledger entries for an invoice"},
    {"path": "/api/v1/reminders/ledger", "methods": ["DELETE"], "description": "Clear reminder ledger"},
]


def get_routes_for_consul():
    """Get route metadata for Consul registration"""
    return {
        "route_count": str(len(ROUTES)),
        "routes": ",".join(sorted({r["path"].split("/{")[0] for r in ROUTES})),
        "api_version": "v1",
        "base_path": "/api/v1",
    }


__all__ = ["SERVICE_METADATA", "ROUTES", "get_routes_for_consul"]
