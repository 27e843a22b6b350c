"""Python client for the feature editor API.

This package holds the client side of the editor: an httpx wrapper around
the REST surface, a feature cache with optimistic tag updates, the drawing
state machine, and the controller that turns drawing-tool events into
feature mutations.

Submodules:
    - api: FeatureApiClient and the ApiError/NetworkError types.
    - cache: FeatureCache with snapshot/apply/reconcile tag updates.
    - drawing: DrawingStore, the drawing/editing state container.
    - controller: DrawingController mediating drawing-tool events.
"""
