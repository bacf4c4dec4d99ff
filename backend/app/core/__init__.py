"""
Core package — cross-cutting concerns.

Modules:
    config          — environment variables & settings
    logging_config  — structured JSON / pretty logging, request context
    errors          — exception hierarchy & handlers
    middleware      — request logging, correlation IDs
    health          — health check aggregation
    redis_pool      — lazily created async Redis client
"""
