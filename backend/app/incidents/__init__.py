"""
incidents — Crowd-sourced incident reports and their verification.

Sub-modules:
    models        — IncidentReport and its status enums
    verification  — UNVERIFIED → COMMUNITY_CONFIRMED → ODPEM_VERIFIED
    intake        — sanitising, validation, corroboration matching
    review        — admin listing and moderation actions
"""
