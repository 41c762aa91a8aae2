"""
Domain types for the Gateway Service.

Upstream payload models, tagged lookup results with the per-endpoint 404
policy, and the request parameter dependencies used by the routes.
"""
