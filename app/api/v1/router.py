# app/api/v1/router.py
"""Main API router combining all v1 endpoints"""
from fastapi import APIRouter

from app.api.v1 import flow_editor

api_router = APIRouter()

api_router.include_router(flow_editor.router, prefix="/cta-flow-editor", tags=["CTA Flow Editor"])
