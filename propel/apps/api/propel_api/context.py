"""Request context management for observability.

Context variables carry the request id and the resolved tenant through
async boundaries so the JSON log formatter can attach them to every record.
"""

from contextvars import ContextVar

# Request ID - unique per HTTP request
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

# Internal user id of the authenticated caller
user_id_var: ContextVar[str] = ContextVar("user_id", default="")

# Active organization resolved for the caller
org_id_var: ContextVar[str] = ContextVar("org_id", default="")

# Subscription plan of the active organization (FREE / PRO)
plan_var: ContextVar[str] = ContextVar("plan", default="")
