"""
Platform HTTP API.

- Rules (/api/rules)
- Evaluation (/api/evaluation)
- Provisions (/api/provisions)
"""

from .router import api_router, API_TAGS

__all__ = ["api_router", "API_TAGS"]
