"""
Storage provider administration routes.

Connectivity tests, capability lookup, registry reload and bucket
management for configured providers. Document content is not served
here; the document layer goes through FileStorageAdapter.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from app.storage.manager import StorageManager
from app.storage.repository import PostgresProviderRepository
from app.storage.schemas import BucketCreateRequest, ProviderListResponse, ProviderTestRequest
from strata_core.domain.exceptions import StorageError
from strata_core.domain.models import BucketInfo, OperationResult, ProviderCapabilities
from strata_core.runtime.errors import ErrorCode

router = APIRouter()
_storage_manager: StorageManager | None = None

STATUS_BY_CODE = {
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.PROVIDER_NOT_FOUND: 404,
    ErrorCode.PROVIDER_NOT_ACTIVE: 409,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.INVALID_INPUT: 400,
    ErrorCode.UNSUPPORTED_OPERATION: 501,
    ErrorCode.CONNECTION_ERROR: 503,
}


def get_storage_manager() -> StorageManager:
    """Lazily construct the manager to avoid side effects at import."""
    global _storage_manager
    if _storage_manager is None:
        _storage_manager = StorageManager(PostgresProviderRepository())
    return _storage_manager


def http_error(error: StorageError) -> HTTPException:
    return HTTPException(status_code=STATUS_BY_CODE.get(error.code, 500), detail=error.to_dict())


@router.get("/health")
def storage_health():
    """Health check for the storage module."""
    return {"status": "ok", "module": "storage"}


@router.get("/providers", response_model=ProviderListResponse)
async def list_providers(manager: StorageManager = Depends(get_storage_manager)):
    providers = await manager.available_provider_ids()
    return ProviderListResponse(
        providers=providers,
        default_provider_id=manager.default_provider_id,
        state=manager.state.value,
    )


@router.get("/providers/types")
def list_provider_types(manager: StorageManager = Depends(get_storage_manager)):
    return {"types": manager.factory.supported_types()}


@router.get("/providers/types/{provider_type}/schema")
def get_provider_schema(provider_type: str, manager: StorageManager = Depends(get_storage_manager)):
    try:
        return {"providerType": provider_type, "fields": manager.factory.get_config_schema(provider_type)}
    except StorageError as e:
        raise http_error(e)


@router.post("/providers/test", response_model=OperationResult)
async def test_provider(request: ProviderTestRequest, manager: StorageManager = Depends(get_storage_manager)):
    """Test a configuration without registering it."""
    return await manager.test_provider_connection(request.provider_type, request.config_json)


@router.post("/providers/reload")
async def reload_providers(manager: StorageManager = Depends(get_storage_manager)):
    await manager.reload()
    return {
        "status": "reloaded",
        "providers": await manager.available_provider_ids(),
        "state": manager.state.value,
    }


@router.get("/providers/{provider_id}/capabilities", response_model=ProviderCapabilities)
async def get_capabilities(provider_id: str, manager: StorageManager = Depends(get_storage_manager)):
    return await manager.get_capabilities(provider_id)


@router.get("/providers/{provider_id}/buckets", response_model=list[BucketInfo])
async def list_buckets(provider_id: str, manager: StorageManager = Depends(get_storage_manager)):
    try:
        return await manager.list_buckets(provider_id)
    except StorageError as e:
        raise http_error(e)


@router.post("/providers/{provider_id}/buckets", response_model=OperationResult)
async def create_bucket(
    provider_id: str,
    request: BucketCreateRequest,
    manager: StorageManager = Depends(get_storage_manager),
):
    try:
        return await manager.create_bucket(provider_id, request.bucket_name)
    except StorageError as e:
        raise http_error(e)


@router.delete("/providers/{provider_id}/buckets/{bucket_name:path}", response_model=OperationResult)
async def remove_bucket(
    provider_id: str,
    bucket_name: str,
    force: bool = Query(default=False),
    manager: StorageManager = Depends(get_storage_manager),
):
    try:
        return await manager.remove_bucket(provider_id, bucket_name, force=force)
    except StorageError as e:
        raise http_error(e)
