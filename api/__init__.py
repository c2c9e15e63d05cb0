"""
HTTP API for the Craftify sync service.

This package contains:
- config: Environment configuration (.env loading)
- schemas: Request and response models
- main: The FastAPI application
"""
