"""API router subpackage for the map feature editor backend.

This package organizes REST endpoints for the feature editor. Each module
exposes its own APIRouter for composition in the application's main
FastAPI instance.

Submodules:
    - features: CRUD endpoints for features and the tag mutation endpoint.
    - status: Health, version and process metrics endpoints.

Routers are grouped by major feature domain to promote clarity and
independent testing.
"""
