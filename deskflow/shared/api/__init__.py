"""
Shared API
==========

Middleware, exception handlers and identity dependencies used by every
bounded context's controllers.
"""
