"""
Shared API
==========

Middleware, exception handlers and dependencies used by every router.
"""
