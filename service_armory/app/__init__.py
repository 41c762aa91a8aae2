"""
Armory Gateway service package.

The gateway fronts a web client and proxies three gaming-data APIs:
- Battle.net: OAuth2 authorization code and client credentials, REST
- Warcraft Logs: OAuth2 client credentials, GraphQL with a points budget
- Raider.IO: unauthenticated REST

Structure:
- app.main: FastAPI app, routes, and wiring.
- app.adapters: HTTP clients for the upstream APIs.
- app.caching: Redis response cache and the reference-data snapshot.
- app.ratelimit: Token buckets and the hourly points budget.
- app.domain: Upstream models, tagged lookup results, request parameters.
"""
