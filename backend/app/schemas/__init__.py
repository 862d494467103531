"""Pydantic schemas for HTTP payloads and realtime events."""
