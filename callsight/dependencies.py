from fastapi import Depends, HTTPException, status
from fastapi.security.api_key import APIKeyHeader

from callsight.config import settings
from callsight.services.pipeline import Pipeline, get_pipeline

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=True)


async def get_api_key(api_key: str = Depends(api_key_header)):
    if not settings.API_KEY or api_key != settings.API_KEY:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid API key")
    return api_key


def get_pipeline_dependency() -> Pipeline:
    return get_pipeline()
