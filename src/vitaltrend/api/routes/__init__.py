"""
API Routes
"""

from vitaltrend.api.routes.vitals import router as vitals_router

__all__ = ["vitals_router"]
