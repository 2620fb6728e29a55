from fastapi import APIRouter

from .endpoints import transcribe, transcripts
from .websocket import speech_ws

api_router = APIRouter()
api_router.include_router(transcribe.router, tags=['transcribe'])
api_router.include_router(transcripts.router, tags=['transcripts'])
api_router.include_router(speech_ws.router, tags=['speech'])
