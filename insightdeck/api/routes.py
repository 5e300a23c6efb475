# API routes

import os
from datetime import datetime
from typing import Any, List, Optional
from urllib.parse import quote
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Response, UploadFile, status
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from insightdeck.catalog.models import Dataset
from insightdeck.catalog.repository import ConflictError
from insightdeck.config.settings import get_settings
from insightdeck.ingest.orchestrator import IngestionOrchestrator
from insightdeck.ingest.service import (
    DatasetNotFoundError,
    DatasetService,
    InvalidMetadataError,
    PreconditionError,
)
from insightdeck.ingest.validator import AdmissionError
from insightdeck.storage.adapter import StorageError

router = APIRouter()
settings = get_settings()


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ColumnModel(CamelModel):
    name: str
    type: str
    nullable: bool


class DatasetMetadata(CamelModel):
    processing_status: str
    error_message: Optional[str] = None
    upload_date: datetime
    last_modified: datetime


class DatasetResponse(CamelModel):
    id: str
    name: str
    description: Optional[str] = None
    owner: Optional[str] = None
    file_name: str
    file_size: int
    file_type: str
    columns: List[ColumnModel]
    row_count: int
    tags: List[str]
    is_public: bool
    metadata: DatasetMetadata
    created_at: datetime
    updated_at: datetime


class DatasetUpdateRequest(CamelModel):
    name: Optional[str] = None
    description: Optional[str] = None
    tags: Optional[List[str]] = None
    is_public: Optional[bool] = None


class UploadResponse(CamelModel):
    message: str
    dataset: DatasetResponse


class ValidationResponse(CamelModel):
    valid: bool
    file_type: Optional[str] = None
    rule: Optional[str] = None
    message: Optional[str] = None


class StatusResponse(CamelModel):
    dataset_id: str
    processing_status: str
    error_message: Optional[str] = None
    last_modified: datetime


class DatasetListResponse(CamelModel):
    datasets: List[DatasetResponse]
    total: int
    page: int
    limit: int
    pages: int


class PreviewResponse(CamelModel):
    columns: List[ColumnModel]
    rows: List[Any]
    total_rows: int
    preview_rows: int
    truncated: bool
    file_type: str


class StatsBasic(CamelModel):
    file_name: str
    file_size: int
    file_size_readable: str
    file_type: str
    row_count: int
    column_count: int
    upload_date: datetime
    processing_status: str


class StatsResponse(CamelModel):
    basic: StatsBasic
    columns: List[ColumnModel]
    tags: List[str]


class InsightContextResponse(CamelModel):
    name: str
    file_type: str
    row_count: int
    columns: List[ColumnModel]


class ExpireStaleResponse(CamelModel):
    expired: List[str]
    count: int


def get_orchestrator() -> IngestionOrchestrator:
    return IngestionOrchestrator()


def get_dataset_service() -> DatasetService:
    return DatasetService()


def _parse_dataset_id(dataset_id: str) -> UUID:
    try:
        return UUID(dataset_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid dataset ID format")


def _to_response(dataset: Dataset) -> DatasetResponse:
    return DatasetResponse(
        id=str(dataset.id),
        name=dataset.name,
        description=dataset.description,
        owner=dataset.owner,
        file_name=dataset.file_name,
        file_size=dataset.file_size,
        file_type=dataset.file_type,
        columns=[ColumnModel(**column) for column in dataset.columns or []],
        row_count=dataset.row_count,
        tags=dataset.tags or [],
        is_public=dataset.is_public,
        metadata=DatasetMetadata(
            processing_status=dataset.processing_status,
            error_message=dataset.error_message,
            upload_date=dataset.upload_date,
            last_modified=dataset.last_modified,
        ),
        created_at=dataset.created_at,
        updated_at=dataset.updated_at,
    )


def _parse_tags(tags: Optional[str]) -> List[str]:
    return [tag for tag in (tags or "").split(",") if tag.strip()]


def _upload_size(file: UploadFile) -> int:
    """Byte size of a spooled upload, found without reading it."""
    if file.size is not None:
        return file.size
    file.file.seek(0, os.SEEK_END)
    size = file.file.tell()
    file.file.seek(0)
    return size


def _rejection(error: AdmissionError) -> HTTPException:
    status_code = (
        status.HTTP_413_REQUEST_ENTITY_TOO_LARGE if error.rule == "size_limit"
        else status.HTTP_400_BAD_REQUEST
    )
    return HTTPException(
        status_code=status_code,
        detail={"error": "Upload rejected", "rule": error.rule, "message": error.message},
    )


@router.post("/uploads", response_model=UploadResponse, status_code=status.HTTP_202_ACCEPTED)
def upload_dataset(
    file: UploadFile = File(...),
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    owner: Optional[str] = Form(None),
    tags: Optional[str] = Form(None),
    is_public: bool = Form(False),
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
):
    """
    Upload a CSV, JSON or Excel file for schema inference.

    - **file**: .csv, .json, .xlsx or .xls (max 10 MB by default)
    - **name**: Optional dataset name (defaults to the filename)
    - **tags**: Optional comma-separated tags

    Returns 202 Accepted with the dataset in `pending` status; poll
    `/uploads/{id}/status` until it is `completed` or `failed`.
    """
    filename = file.filename or ""
    try:
        # Size and type are checked before the body is read into memory
        orchestrator.admit(filename, file.content_type, _upload_size(file))
        dataset = orchestrator.upload(
            data=file.file.read(),
            filename=filename,
            content_type=file.content_type,
            name=name,
            description=description,
            owner=owner,
            tags=_parse_tags(tags),
            is_public=is_public,
        )
    except AdmissionError as e:
        raise _rejection(e)
    except StorageError as e:
        raise HTTPException(status_code=500, detail=f"Failed to store upload: {e}")

    return UploadResponse(
        message="File uploaded successfully. Processing started.",
        dataset=_to_response(dataset),
    )


@router.post("/uploads/validate", response_model=ValidationResponse)
def validate_upload(
    file: UploadFile = File(...),
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
):
    """Check an upload against the admission rules without storing it."""
    result = orchestrator.validate(file.filename, file.content_type, _upload_size(file))
    return ValidationResponse(**result)


@router.post("/uploads/{dataset_id}/process", response_model=DatasetResponse,
             status_code=status.HTTP_202_ACCEPTED)
def reprocess_dataset(
    dataset_id: str,
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
):
    """Queue a new ingestion attempt for a completed or failed dataset."""
    dataset_uuid = _parse_dataset_id(dataset_id)
    try:
        dataset = orchestrator.reprocess(dataset_uuid)
    except DatasetNotFoundError:
        raise HTTPException(status_code=404, detail="Dataset not found")
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _to_response(dataset)


@router.get("/uploads/{dataset_id}/status", response_model=StatusResponse)
def get_upload_status(
    dataset_id: str,
    service: DatasetService = Depends(get_dataset_service),
):
    """Processing status of an uploaded dataset."""
    dataset_uuid = _parse_dataset_id(dataset_id)
    try:
        result = service.get_status(dataset_uuid)
    except DatasetNotFoundError:
        raise HTTPException(status_code=404, detail="Dataset not found")
    return StatusResponse(dataset_id=str(dataset_uuid), **result)


@router.get("/datasets", response_model=DatasetListResponse)
def list_datasets(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status_filter: Optional[str] = Query(
        None, alias="status", pattern="^(pending|processing|completed|failed)$"),
    owner: Optional[str] = Query(None),
    service: DatasetService = Depends(get_dataset_service),
):
    """List datasets, newest first."""
    datasets, total = service.list_datasets(
        page=page, limit=limit, status=status_filter, owner=owner)
    return DatasetListResponse(
        datasets=[_to_response(d) for d in datasets],
        total=total,
        page=page,
        limit=limit,
        pages=(total + limit - 1) // limit,
    )


@router.get("/datasets/{dataset_id}", response_model=DatasetResponse)
def get_dataset(
    dataset_id: str,
    service: DatasetService = Depends(get_dataset_service),
):
    """Get a single dataset."""
    dataset_uuid = _parse_dataset_id(dataset_id)
    try:
        return _to_response(service.get_dataset(dataset_uuid))
    except DatasetNotFoundError:
        raise HTTPException(status_code=404, detail="Dataset not found")


@router.put("/datasets/{dataset_id}", response_model=DatasetResponse)
def update_dataset(
    dataset_id: str,
    changes: DatasetUpdateRequest,
    service: DatasetService = Depends(get_dataset_service),
):
    """
    Edit name, description, tags or visibility.

    Omitted fields are left as they are. Processing status and the inferred
    schema cannot be changed here.
    """
    dataset_uuid = _parse_dataset_id(dataset_id)
    try:
        dataset = service.update_dataset(dataset_uuid, **changes.model_dump(exclude_unset=True))
    except DatasetNotFoundError:
        raise HTTPException(status_code=404, detail="Dataset not found")
    except InvalidMetadataError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _to_response(dataset)


@router.post("/datasets/{dataset_id}/duplicate", response_model=DatasetResponse,
             status_code=status.HTTP_201_CREATED)
def duplicate_dataset(
    dataset_id: str,
    service: DatasetService = Depends(get_dataset_service),
):
    """Copy a completed or failed dataset, file included."""
    dataset_uuid = _parse_dataset_id(dataset_id)
    try:
        dataset = service.duplicate_dataset(dataset_uuid)
    except DatasetNotFoundError:
        raise HTTPException(status_code=404, detail="Dataset not found")
    except PreconditionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except StorageError as e:
        raise HTTPException(status_code=500, detail=f"Failed to copy dataset file: {e}")
    return _to_response(dataset)


@router.delete("/datasets/{dataset_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_dataset(
    dataset_id: str,
    service: DatasetService = Depends(get_dataset_service),
):
    """Delete a dataset and its stored file."""
    dataset_uuid = _parse_dataset_id(dataset_id)
    try:
        service.delete_dataset(dataset_uuid)
    except DatasetNotFoundError:
        raise HTTPException(status_code=404, detail="Dataset not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/datasets/{dataset_id}/preview", response_model=PreviewResponse)
def preview_dataset(
    dataset_id: str,
    limit: Optional[int] = Query(None, ge=1, le=settings.preview_max_limit),
    service: DatasetService = Depends(get_dataset_service),
):
    """First rows of a completed dataset."""
    dataset_uuid = _parse_dataset_id(dataset_id)
    try:
        result = service.preview(dataset_uuid, limit=limit)
    except DatasetNotFoundError:
        raise HTTPException(status_code=404, detail="Dataset not found")
    except PreconditionError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StorageError as e:
        raise HTTPException(status_code=500, detail=f"Failed to read dataset file: {e}")
    return PreviewResponse(**result)


@router.get("/datasets/{dataset_id}/stats", response_model=StatsResponse)
def dataset_stats(
    dataset_id: str,
    service: DatasetService = Depends(get_dataset_service),
):
    """Descriptive summary of a dataset."""
    dataset_uuid = _parse_dataset_id(dataset_id)
    try:
        return StatsResponse(**service.stats(dataset_uuid))
    except DatasetNotFoundError:
        raise HTTPException(status_code=404, detail="Dataset not found")


@router.get("/datasets/{dataset_id}/insight-context", response_model=InsightContextResponse)
def dataset_insight_context(
    dataset_id: str,
    service: DatasetService = Depends(get_dataset_service),
):
    """Summary of a completed dataset for insight generation."""
    dataset_uuid = _parse_dataset_id(dataset_id)
    try:
        return InsightContextResponse(**service.insight_context(dataset_uuid))
    except DatasetNotFoundError:
        raise HTTPException(status_code=404, detail="Dataset not found")
    except PreconditionError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/datasets/{dataset_id}/download")
def download_dataset(
    dataset_id: str,
    service: DatasetService = Depends(get_dataset_service),
):
    """Original uploaded file."""
    dataset_uuid = _parse_dataset_id(dataset_id)
    try:
        dataset, data = service.download(dataset_uuid)
    except DatasetNotFoundError:
        raise HTTPException(status_code=404, detail="Dataset not found")
    except StorageError as e:
        raise HTTPException(status_code=500, detail=f"Failed to read dataset file: {e}")

    return Response(
        content=data,
        media_type=dataset.content_type or "application/octet-stream",
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(dataset.file_name)}"},
    )


@router.post("/admin/datasets/expire-stale", response_model=ExpireStaleResponse)
def expire_stale_datasets(
    timeout_seconds: Optional[int] = Query(None, ge=0),
    service: DatasetService = Depends(get_dataset_service),
):
    """Fail datasets stuck in `processing` longer than the job timeout."""
    expired = service.expire_stale(timeout_seconds)
    return ExpireStaleResponse(expired=expired, count=len(expired))
