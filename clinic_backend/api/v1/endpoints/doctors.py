"""Doctor roster endpoints."""

from fastapi import APIRouter, Query

from clinic_backend.dependencies import CurrentActor, WorkflowService
from clinic_backend.schemas.users import Doctor, MedicalSpecialty

router = APIRouter()


@router.get("", response_model=list[Doctor])
async def list_doctors(
    current_actor: CurrentActor,
    service: WorkflowService,
) -> list[Doctor]:
    """List active doctors."""
    return await service.list_doctors(current_actor)


@router.get("/eligible", response_model=list[Doctor])
async def eligible_doctors(
    current_actor: CurrentActor,
    service: WorkflowService,
    department: MedicalSpecialty = Query(...),
) -> list[Doctor]:
    """
    List doctors who can take appointments in a department.

    Args:
        current_actor: Authenticated staff member
        service: Workflow service
        department: Department code

    Returns:
        Doctors whose specialty matches, general practitioners, and doctors
        without a specialty
    """
    return await service.eligible_doctors_for_department(department, current_actor)
