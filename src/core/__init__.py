"""
Core Module - Shared infrastructure for cross-cutting concerns.

This module provides:
- The domain error taxonomy
- The service registry used to wire components together
- The HTTP API routers
"""
