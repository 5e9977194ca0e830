"""Pydantic schemas for the blob store wire protocol."""
