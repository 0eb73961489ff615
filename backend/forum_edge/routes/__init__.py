# Routes package init
"""
Forum Edge — Routes Package
=============================

Route Inventory:
    - pages.py:    GET  /                   (HTML shell, consumes the CSP nonce)
    - session.py:  GET  /api/auth/session   (session resolved by the edge)
                   POST /api/auth/signout   (revoke + clear cookies)
    - health.py:   GET  /health             (service health check)

Routes stay thin: the edge gate has already rate limited the request,
refreshed the session into request.state, and will attach the security
headers to whatever the route returns.
"""
