# =============================================================================
# connect_core/__init__.py
# Connect Messaging - client sync layer and remote API
# =============================================================================
"""
Connect messaging core.

Subpackages:
    api       - HTTP adapter for the remote store
    offline   - connectivity tracking, local fallback store, sync gateway, poll loop
    services  - client-facing rules (login, compose, groups)
    server    - FastAPI remote API over a MongoDB document store
"""

__version__ = "1.0.0"
