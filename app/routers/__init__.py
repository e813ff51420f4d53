"""
API Routers
Separate router modules for each domain.
"""

from app.routers import releases

__all__ = ["releases"]
