"""
Forum Edge — Application Package
==================================

What:  Request-edge gate of the forum web application.

Architecture Note:

    ┌─────────────────────────────────────┐
    │     Middleware (Edge Pipeline)      │  ← rate limit, session, headers
    ├─────────────────────────────────────┤
    │           Routes (HTTP)             │  ← HTML shell, session API, health
    ├─────────────────────────────────────┤
    │     Services (External Clients)     │  ← auth session service
    ├─────────────────────────────────────┤
    │          Schemas (Data)             │  ← Pydantic models
    └─────────────────────────────────────┘

    Domain data (feed, posts, comments, messages, presence) belongs to the
    managed backend and never passes through this package.
"""

__version__ = "1.0.0"
