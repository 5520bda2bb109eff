# Services package init
"""
Specialist Marketplace Backend — Services Layer
================================================

Service Inventory:
    - SpecialistService: listing lifecycle (create, read, update, publish, delete)
    - slug_service:      slug normalization and uniqueness
    - pricing:           price parsing and final_price derivation
    - MediaStorage (abstract): where image bytes go
        - CloudinaryStorage: signed uploads with retries and a circuit breaker
        - LocalDiskStorage:  files under UPLOAD_DIR, served from /uploads
"""
