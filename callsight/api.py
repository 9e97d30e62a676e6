from fastapi import APIRouter
from callsight.routers import processing_router, media_router, transcription_router, query_router

# Create a new router
router = APIRouter()

# Include the routers from the other files
router.include_router(processing_router.router, tags=["Processing"])
router.include_router(media_router.router, tags=["Media"])
router.include_router(transcription_router.router, tags=["Transcriptions"])
router.include_router(query_router.router, tags=["Query"])
