"""
Request/response schemas for the storage admin API.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class ProviderListResponse(BaseModel):
    providers: list[str]
    default_provider_id: str | None = None
    state: str


class ProviderTestRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    provider_type: str = Field(alias="providerType")
    config_json: str = Field(default="{}", alias="configJson")


class BucketCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    bucket_name: str = Field(alias="bucketName")
