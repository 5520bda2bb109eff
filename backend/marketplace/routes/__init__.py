# Routes package init
"""
Specialist Marketplace Backend — API Routes Package
====================================================

Route Inventory:
    - specialists.py: /api/specialists CRUD + PATCH /{id}/publish
    - upload.py:      GET /api/upload/cloudinary-signature, GET /uploads/{filename}
    - health.py:      GET /api/health, GET /
    - payload.py:     request body resolution shared by create and update

Routes stay thin: read the request, call a service, wrap the result.
"""
