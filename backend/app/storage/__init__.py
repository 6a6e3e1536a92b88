"""
storage — Persistence ports and their adapters.

Sub-modules:
    base    — AlertStore / RecipientDirectory / IncidentStore protocols
    memory  — in-process adapters (development, tests)
    tables  — SQLAlchemy ORM tables
    sql     — SQLAlchemy async adapters (PostgreSQL)
"""
