"""API route handlers."""
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, HTTPException, Request, Response, status

from ..core.config import settings, get_config_validation_result
from ..core.errors import ReconciliationError, StateCollectionError
from ..core.models import (
    CurrentStateEntry,
    DeploymentPlan,
    HealthResponse,
    ReconcileRequest,
    ReconcileResponse,
    StateFailureEntry,
)
from ..services.agent_task_service import agent_task_service
from ..services.assembler import DeploymentAssembler
from ..services.current_state_service import CollectionOptions

logger = logging.getLogger(__name__)

router = APIRouter()


def _vm_cid(store, vm_id: Optional[int]) -> str:
    vm = store.get_vm(vm_id) if vm_id is not None else None
    return vm.cid if vm else ""


@router.get("/healthz", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        version=settings.app_version,
        timestamp=datetime.now(timezone.utc),
    )


@router.get("/readyz", response_model=HealthResponse, tags=["Health"])
async def readiness_check(response: Response):
    """Readiness check endpoint."""

    config_result = get_config_validation_result()
    readiness_status = "ready"
    if config_result and config_result.has_errors:
        readiness_status = "config_error"

    response.status_code = status.HTTP_200_OK
    return HealthResponse(
        status=readiness_status,
        version=settings.app_version,
        timestamp=datetime.now(timezone.utc),
    )


@router.get("/api/v1/diagnostics/workers", tags=["Diagnostics"])
async def get_worker_diagnostics():
    """Return agent worker pool metrics."""
    return agent_task_service.get_metrics()


@router.post(
    "/api/v1/deployments/{deployment_name}/reconcile",
    response_model=ReconcileResponse,
    tags=["Deployments"],
)
async def reconcile_deployment(
    deployment_name: str,
    request: Request,
    body: Optional[ReconcileRequest] = None,
):
    """Verify the existing VMs of a deployment against their agents.

    Collects verified agent state, marks orphaned VMs for deletion and
    resumes an interrupted job rename when one is supplied. A VM that cannot
    be verified fails the request with 409 before anything is written.
    """

    store = getattr(request.app.state, "record_store", None)
    gateway = getattr(request.app.state, "agent_gateway", None)
    if store is None or gateway is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Agent gateway is not configured",
        )

    deployment = store.get_deployment_by_name(deployment_name)
    if deployment is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Deployment '{deployment_name}' not found",
        )

    plan = DeploymentPlan(
        name=deployment.name,
        deployment_id=deployment.id,
        rename=body.rename if body else None,
    )
    assembler = DeploymentAssembler(
        plan,
        store,
        gateway,
        options=CollectionOptions.from_settings(settings),
        task_service=agent_task_service,
    )

    try:
        existing = await assembler.bind_existing_deployment()
    except ReconciliationError as exc:
        logger.warning("Reconciliation of '%s' failed: %s", deployment_name, exc.message)
        detail = {"kind": exc.kind, "message": exc.message}
        if isinstance(exc, StateCollectionError):
            detail["failures"] = [
                StateFailureEntry(
                    instance_id=failure.instance.id,
                    job=failure.instance.job,
                    index=failure.instance.index,
                    vm_cid=failure.vm_cid,
                    kind=failure.kind,
                    message=failure.error.message,
                ).model_dump()
                for failure in exc.failures
            ]
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=detail) from exc

    return ReconcileResponse(
        deployment=deployment.name,
        states=[
            CurrentStateEntry(
                instance_id=instance.id,
                job=instance.job,
                index=instance.index,
                vm_cid=_vm_cid(store, instance.vm_id),
                state=state,
            )
            for instance, state in existing.current_states.items()
        ],
        renamed_instances=[instance.label for instance in existing.renamed_instances],
        vms_marked_for_deletion=[vm.cid for vm in plan.vms_to_delete],
    )
