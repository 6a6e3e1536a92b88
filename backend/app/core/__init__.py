"""
Core package — cross-cutting concerns.

Modules:
    config          — environment variables & settings
    logging_config  — structured JSON / coloured console logging
    middleware      — request logging, request IDs, timing
    errors          — exception hierarchy & handlers
    auth            — admin authentication seam & role checks
    enums           — parishes, severities, lenient enum parsing
    health          — health check aggregation
    database        — async SQLAlchemy engine & sessions
"""
