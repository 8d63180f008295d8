"""Workflow API router: drive one invoice submission step by step."""

import structlog
from fastapi import APIRouter, Depends, status

from tradefin.core.services import Services, get_services
from tradefin.models.enums import DocumentType
from tradefin.modules.workflow.schemas import DocumentAttach, FormUpdate, WorkflowResponse

logger = structlog.get_logger()

router = APIRouter(prefix="/workflows", tags=["workflows"])


@router.post("", response_model=WorkflowResponse, status_code=status.HTTP_201_CREATED)
async def create_workflow(services: Services = Depends(get_services)):
    return WorkflowResponse.of(services.workflows.create())


@router.get("/{workflow_id}", response_model=WorkflowResponse)
async def get_workflow(workflow_id: str, services: Services = Depends(get_services)):
    return WorkflowResponse.of(services.workflows.get(workflow_id))


@router.patch("/{workflow_id}", response_model=WorkflowResponse)
async def update_form(
    workflow_id: str,
    body: FormUpdate,
    services: Services = Depends(get_services),
):
    workflow = services.workflows.get(workflow_id)
    workflow.update_form(body.model_dump(exclude_unset=True))
    return WorkflowResponse.of(workflow)


@router.put("/{workflow_id}/documents/{doc_type}", response_model=WorkflowResponse)
async def attach_document(
    workflow_id: str,
    doc_type: DocumentType,
    body: DocumentAttach,
    services: Services = Depends(get_services),
):
    workflow = services.workflows.get(workflow_id)
    workflow.attach_document(doc_type, body.content_hash)
    return WorkflowResponse.of(workflow)


@router.post("/{workflow_id}/submit", response_model=WorkflowResponse)
async def submit(workflow_id: str, services: Services = Depends(get_services)):
    """Submit the form. Verification and the advance to ready continue in the background."""
    workflow = services.workflows.get(workflow_id)
    await workflow.submit()
    return WorkflowResponse.of(workflow)


@router.post("/{workflow_id}/list-for-investment", response_model=WorkflowResponse)
async def list_for_investment(workflow_id: str, services: Services = Depends(get_services)):
    workflow = services.workflows.get(workflow_id)
    await workflow.list_for_investment()
    return WorkflowResponse.of(workflow)


@router.post("/{workflow_id}/reset", response_model=WorkflowResponse)
async def reset(workflow_id: str, services: Services = Depends(get_services)):
    workflow = services.workflows.get(workflow_id)
    workflow.reset()
    return WorkflowResponse.of(workflow)


@router.delete("/{workflow_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_workflow(workflow_id: str, services: Services = Depends(get_services)):
    services.workflows.teardown(workflow_id)
