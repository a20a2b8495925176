"""
API module for PlanDB server.

This module provides the external interface:
- HTTP server (REST API over PlanStore)
- Payload validation for plan documents

Invariants:
    - Writes to an existing plan require If-Match
    - Responses carry the ETag and Last-Modified of the version they describe

How to change safely:
    - Add new endpoints, don't change the status codes of existing ones
    - Schema changes must still accept every stored document
"""

from .http_server import create_http_app, start_http_server
from .schema import validate_plan

__all__ = [
    "create_http_app",
    "start_http_server",
    "validate_plan",
]
