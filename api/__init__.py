"""
FastAPI application for the service taxonomy import system.

This package contains the REST API and WebSocket server for catalog
imports, taxonomy maintenance and background job processing.
"""

__version__ = "1.0.0"