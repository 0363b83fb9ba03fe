import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from cityreport.core.database import ServiceContainer, get_services
from cityreport.core.errors import StoreUnavailable
from cityreport.services.preference_service import DARK_MODE_KEY

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Preferences"])


class DarkModePreference(BaseModel):
    darkMode: bool


@router.get("/dark-mode", response_model=DarkModePreference)
async def get_dark_mode(services: ServiceContainer = Depends(get_services)):
    try:
        enabled = await services.preferences.get_bool(DARK_MODE_KEY, services.settings.dark_mode_default)
    except StoreUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    return DarkModePreference(darkMode=enabled)


@router.put("/dark-mode", response_model=DarkModePreference)
async def set_dark_mode(body: DarkModePreference, services: ServiceContainer = Depends(get_services)):
    try:
        await services.preferences.set_bool(DARK_MODE_KEY, body.darkMode)
    except StoreUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    logger.info(f"🌓 Dark mode set to {body.darkMode}")
    return body
