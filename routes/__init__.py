"""
API route modules.

Each module defines routes for one domain area.
"""

from routes.import_csv import router as import_csv_router
from routes.mapping_templates import router as mapping_templates_router
from routes.labels import router as labels_router

__all__ = [
    "import_csv_router",
    "mapping_templates_router",
    "labels_router",
]
