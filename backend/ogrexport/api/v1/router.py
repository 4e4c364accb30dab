"""
API v1 Router
=============

Main router that combines all API v1 endpoints.
"""

from fastapi import APIRouter

from ogrexport.api.v1.endpoints import ogr_exports


api_router = APIRouter()

api_router.include_router(ogr_exports.router, tags=["Exports"])
