"""
gateway/dependencies.py

FastAPI dependency returning the engine bound to the running app.
"""

from fastapi import Request

from engine.monitor import GuardianEngine


def get_engine(request: Request) -> GuardianEngine:
    return request.app.state.engine
