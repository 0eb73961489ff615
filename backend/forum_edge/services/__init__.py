# Services package init
"""
Forum Edge — Services Layer
=============================

What:  Clients for the external collaborators the edge talks to.

Service Inventory:
    - AuthSessionService (abstract): validate / refresh / revoke sessions
    - SupabaseAuthService: concrete implementation over Supabase Auth REST

The data/query service (feed, posts, messages) is consumed by route
handlers of the forum itself and has no client here: the edge never
touches domain data.
"""
