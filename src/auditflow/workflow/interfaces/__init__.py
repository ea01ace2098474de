"""
Workflow Interfaces Layer
=========================

FastAPI route handlers for workflow definitions and approval requests.
"""

from auditflow.workflow.interfaces.controllers import approval_router, workflow_router

__all__ = ["approval_router", "workflow_router"]
