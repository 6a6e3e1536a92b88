"""
alerts — Multi-channel community alert delivery.

Sub-modules:
    channels/       — Per-channel delivery backends (email, SMS, push)
    models          — Data structures and the attempt state machine
    recipients      — Parish / eligibility / opt-in targeting
    dispatcher      — Throttled batch fan-out with per-channel limits
    tracker         — Outcome accounting and failed-subset retry
    alert_service   — Orchestration: create, dispatch, retry, analytics
"""
