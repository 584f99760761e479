from fastapi import APIRouter

from batch.api.api_v1.endpoints import requests

api_router = APIRouter()
api_router.include_router(requests.router, tags=["Batch requests"])
