"""Pydantic request and response schemas for the SalonBook API."""
