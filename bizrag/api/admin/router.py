"""Admin endpoints: sync control, health and index maintenance."""

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, status

from bizrag.api.admin.schemas import SimilarSearchRequest
from bizrag.config.logger import app_logger
from bizrag.services.admin import AdminService, get_admin_service
from bizrag.services.sync_orchestrator import SyncResult, SyncRunSummary
from bizrag.utils.errors import NotInitializedError, UnknownEntityTypeError
from bizrag.utils.responses import SuccessResponse, success_response

router = APIRouter(prefix="/v1/ai/admin", tags=["admin"])


def admin_service() -> AdminService:
    try:
        return get_admin_service()
    except NotInitializedError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))


@router.get(
    "/sync/status",
    response_model=SuccessResponse[Dict[str, Dict[str, Any]]],
    summary="Per-entity-type sync checkpoints",
)
async def sync_status(admin: AdminService = Depends(admin_service)):
    return success_response(admin.get_sync_status())


@router.post(
    "/sync/full",
    response_model=SuccessResponse[SyncRunSummary],
    summary="Reset every checkpoint and resync all entity types",
)
async def full_resync(admin: AdminService = Depends(admin_service)):
    try:
        summary = await admin.force_full_resync()
    except Exception as e:
        app_logger.error(f"Full resync failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Full resync failed: {str(e)}",
        )
    return success_response(summary, message="Full resync completed")


@router.post(
    "/sync/{entity_type}",
    response_model=SuccessResponse[SyncResult],
    summary="Force a full sync of one entity type",
)
async def force_sync(entity_type: str, admin: AdminService = Depends(admin_service)):
    try:
        result = await admin.force_sync_entity(entity_type)
    except UnknownEntityTypeError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    except Exception as e:
        app_logger.error(f"Forced sync of {entity_type} failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Forced sync failed: {str(e)}",
        )
    return success_response(result, message=f"Sync of {entity_type} finished")


@router.get(
    "/health",
    response_model=SuccessResponse[Dict[str, Any]],
    summary="Vector store, embeddings and database health",
)
async def service_health(admin: AdminService = Depends(admin_service)):
    return success_response(await admin.get_service_health())


@router.get(
    "/data-quality",
    response_model=SuccessResponse[Dict[str, Any]],
    summary="Per-type counts, sync recency and error rates",
)
async def data_quality(admin: AdminService = Depends(admin_service)):
    try:
        report = await admin.get_data_quality_report()
    except NotInitializedError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    return success_response(report)


@router.get(
    "/performance",
    response_model=SuccessResponse[Dict[str, Any]],
    summary="Sync durations and chat response times",
)
async def performance(admin: AdminService = Depends(admin_service)):
    return success_response(admin.get_performance_metrics())


@router.get(
    "/vector-store/stats",
    response_model=SuccessResponse[Dict[str, Any]],
    summary="Chunk counts by type, dimension and footprint",
)
async def vector_store_stats(admin: AdminService = Depends(admin_service)):
    try:
        stats = await admin.get_vector_store_stats()
    except NotInitializedError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    return success_response(stats)


@router.delete(
    "/vector-store",
    response_model=SuccessResponse[dict],
    summary="Clear the index and reset every sync checkpoint",
)
async def clear_vector_store(admin: AdminService = Depends(admin_service)):
    try:
        await admin.clear_vector_store()
    except NotInitializedError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    except Exception as e:
        app_logger.error(f"Clearing vector store failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Clearing vector store failed: {str(e)}",
        )
    return success_response({"cleared": True}, message="Vector store cleared")


@router.post(
    "/search/similar",
    response_model=SuccessResponse[List[Dict[str, Any]]],
    summary="Raw similarity search for debugging",
)
async def similar_content(request: SimilarSearchRequest, admin: AdminService = Depends(admin_service)):
    try:
        results = await admin.search_similar_content(request.query, request.limit, request.filter)
    except NotInitializedError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    except Exception as e:
        app_logger.error(f"Similarity search failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Similarity search failed: {str(e)}",
        )
    return success_response(results)
