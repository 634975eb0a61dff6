from fastapi import APIRouter, HTTPException
from fastapi.logger import logger
import traceback

from homeport.api.dtos import VersionInfo, VersionResponse

router = APIRouter(prefix="/info", tags=["Info"])


@router.get("/version", response_model=VersionResponse)
def get_version_endpoint():
    from homeport.version import get_version
    try:
        return VersionResponse(data=VersionInfo(version=get_version()))
    except Exception as e:
        logger.error(f"Error getting version info: {e}\n{traceback.format_exc()}")
        raise HTTPException(status_code=500, detail=str(e))
