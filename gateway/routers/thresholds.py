"""
gateway/routers/thresholds.py

GET/PUT /config: read or hot-swap the engine's ThresholdConfig.
The new config applies from the next evaluation cycle.
"""

from fastapi import APIRouter, Depends

from engine.monitor import GuardianEngine
from engine.schemas import ThresholdConfig
from gateway.dependencies import get_engine

router = APIRouter(prefix="/config")


@router.get("", response_model=ThresholdConfig)
async def current_config(
    engine: GuardianEngine = Depends(get_engine),
) -> ThresholdConfig:
    return engine.config


@router.put("", response_model=ThresholdConfig)
async def replace_config(
    config: ThresholdConfig,
    engine: GuardianEngine = Depends(get_engine),
) -> ThresholdConfig:
    engine.update_config(config)
    return engine.config
