"""
HTTP API - FastAPI application.
"""
