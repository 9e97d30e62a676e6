import logging
import mimetypes
import posixpath

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import Response, StreamingResponse
from pydantic import BaseModel

from callsight.dependencies import get_api_key, get_pipeline_dependency
from callsight.errors import RecordingNotFoundError, RemoteTransportError, TransportTimeoutError
from callsight.services.audio_validator import validate_audio
from callsight.services.pipeline import Pipeline

logger = logging.getLogger(__name__)

router = APIRouter()


class DebugAudioRequest(BaseModel):
    recordingLocation: str


def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, RecordingNotFoundError):
        return HTTPException(status_code=404, detail={"message": str(e), "attempts": e.attempts})
    if isinstance(e, TransportTimeoutError):
        return HTTPException(status_code=504, detail=str(e))
    return HTTPException(status_code=502, detail=str(e))


@router.api_route("/media/recordings", methods=["GET", "HEAD"], tags=["Media"])
async def stream_recording(
    request: Request,
    location: str,
    expires: int,
    signature: str,
    pipeline: Pipeline = Depends(get_pipeline_dependency),
):
    """
    Serves a recording straight from SFTP to a holder of a signed link.
    HEAD only locates the file, so the transcription engine's reachability
    probe is cheap.
    """
    if not pipeline.signer.verify(location, expires, signature):
        raise HTTPException(status_code=403, detail="Invalid or expired signature")

    try:
        stat = await pipeline.fetcher.locate(location)
    except (RecordingNotFoundError, RemoteTransportError, TransportTimeoutError) as e:
        logger.warning(f"Signed media request for {location} failed: {e}")
        raise _http_error(e)

    media_type = mimetypes.guess_type(posixpath.basename(stat.path))[0] or "application/octet-stream"
    headers = {"Content-Length": str(stat.size), "Accept-Ranges": "none"}
    if request.method == "HEAD":
        return Response(status_code=200, media_type=media_type, headers=headers)

    logger.info(f"Streaming {stat.path} ({stat.size} bytes) to signed link holder")
    return StreamingResponse(pipeline.sftp.read_chunks(stat.path), media_type=media_type, headers=headers)


@router.post("/debug-audio", dependencies=[Depends(get_api_key)], tags=["Media"])
async def debug_audio(request: DebugAudioRequest, pipeline: Pipeline = Depends(get_pipeline_dependency)):
    """Downloads and inspects a recording without transcribing it."""
    candidates = pipeline.fetcher.resolver.resolve(request.recordingLocation)
    try:
        audio = await pipeline.fetcher.fetch(request.recordingLocation)
    except (RecordingNotFoundError, RemoteTransportError, TransportTimeoutError) as e:
        raise _http_error(e)

    verdict = validate_audio(audio.data, audio.path)
    return {
        "recordingLocation": request.recordingLocation,
        "candidates": candidates,
        "path": audio.path,
        "size": audio.size,
        "downloadSeconds": round(audio.elapsed_seconds, 2),
        "valid": verdict.valid,
        "detectedType": verdict.detected_type,
        "confident": verdict.confident,
        "reason": verdict.reason,
        "headerHex": verdict.header_hex,
        "headerText": verdict.header_text,
        "recommendations": verdict.recommendations,
    }
