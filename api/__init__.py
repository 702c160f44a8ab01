"""
API Layer for the Face Login System

This package provides the FastAPI-based host for the face login session:
- REST endpoints to enroll, verify, reset and clear the enrollment
- WebSocket endpoint streaming session state changes and outcomes
- Health check endpoint
"""
