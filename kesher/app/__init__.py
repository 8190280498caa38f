"""Kesher FastAPI application."""
