"""Pydantic models for model API responses.

This module contains the response schema for the /api/v1/models endpoint.
"""

from pydantic import BaseModel, Field


class ModelDetail(BaseModel):
    """A model offered by the completion endpoint.

    Attributes:
        id: Model id as accepted in the request's "model" field (e.g., "gpt-4o")
    """

    id: str = Field(..., description="Model id")


class ModelListResponse(BaseModel):
    """Response model for listing the endpoint's models.

    Attributes:
        models: Models offered by the endpoint, sorted by id
    """

    models: list[ModelDetail] = Field(..., description="List of available models")
