"""
gateway/constants.py

HTTP surface constants. Engine thresholds live in engine/constants.py.
"""

# ── Server ───────────────────────────────────────────────────
GATEWAY_PORT: int = 8000

# ── Incident listing ─────────────────────────────────────────
DEFAULT_INCIDENT_LIMIT: int = 20
MAX_INCIDENT_LIMIT: int = 50
