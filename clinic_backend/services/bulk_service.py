"""Bulk operations over many appointments."""

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from clinic_backend.core.exceptions import AppException
from clinic_backend.schemas.appointments import (
    BulkItemError,
    BulkOperation,
    BulkOperationRequest,
    BulkOperationResult,
)
from clinic_backend.schemas.users import Actor
from clinic_backend.services.appointment_service import (
    AppointmentWorkflowService,
    TransitionOutcome,
    require_reason,
    require_staff,
    validate_payment_amount,
)

logger = structlog.get_logger(__name__)

ItemHandler = Callable[[int], Awaitable[TransitionOutcome]]


class BulkOperationCoordinator:
    """
    Applies one workflow operation to a set of appointments.

    Items are independent: each one runs the full single-item pipeline in its
    own store transaction, and a failing item never rolls back or blocks the
    others. Side effects of the items that committed run only after every
    item has finished.
    """

    def __init__(self, workflow: AppointmentWorkflowService, max_concurrency: int = 10):
        """Initialize coordinator with the workflow service and fan-out limit."""
        self.workflow = workflow
        self.max_concurrency = max_concurrency

    def _handler(self, request: BulkOperationRequest, actor: Actor) -> ItemHandler:
        """
        Validate the shared parameters once and bind the per-item operation.

        Raises:
            ValidationException: If the operation parameters are invalid
            ForbiddenException: If the actor may not run the operation at all
        """
        workflow = self.workflow
        operation = request.operation

        if operation == BulkOperation.CANCEL:
            reason = require_reason(request.reason, "Cancellation reason")
            return lambda appointment_id: workflow.apply_cancel(appointment_id, reason, actor)

        if operation == BulkOperation.REQUEST_PAYMENT:
            amount = validate_payment_amount(request.amount)
            return lambda appointment_id: workflow.apply_request_payment(
                appointment_id, amount, actor
            )

        if operation == BulkOperation.MARK_PAID:
            return lambda appointment_id: workflow.apply_mark_paid(appointment_id, actor)

        if operation == BulkOperation.COMPLETE:
            return lambda appointment_id: workflow.apply_complete(appointment_id, actor)

        if operation == BulkOperation.MARK_NO_SHOW:
            return lambda appointment_id: workflow.apply_mark_no_show(appointment_id, actor)

        if operation == BulkOperation.CREATE_ACCOUNTS:
            require_staff(actor, "create patient accounts")
            return lambda appointment_id: workflow.apply_create_account(appointment_id, actor)

        if operation == BulkOperation.HARD_DELETE:
            require_staff(actor, "delete appointments")
            return lambda appointment_id: workflow.apply_hard_delete(appointment_id, actor)

        raise ValueError(f"Unsupported bulk operation: {operation}")

    async def bulk_apply(self, request: BulkOperationRequest, actor: Actor) -> BulkOperationResult:
        """
        Run ``request.operation`` for every id in ``request.ids``.

        Args:
            request: Ids, operation and shared parameters
            actor: Authenticated caller, applied to every item

        Returns:
            Aggregate result. Every distinct id lands in exactly one of
            ``succeeded_ids`` or ``failed_ids``, in input order.

        Raises:
            ValidationException: If the shared parameters are invalid; nothing
                is changed in that case
        """
        handler = self._handler(request, actor)
        ids = list(dict.fromkeys(request.ids))
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def run_item(appointment_id: int) -> TransitionOutcome | BulkItemError:
            async with semaphore:
                try:
                    return await handler(appointment_id)
                except AppException as e:
                    return BulkItemError(
                        id=appointment_id, error=type(e).__name__, message=e.message
                    )
                except Exception as e:
                    logger.exception(
                        "bulk_item_failed",
                        operation=request.operation.value,
                        appointment_id=appointment_id,
                    )
                    return BulkItemError(
                        id=appointment_id, error=type(e).__name__, message=str(e)
                    )

        outcomes = await asyncio.gather(*(run_item(appointment_id) for appointment_id in ids))

        result = BulkOperationResult(operation=request.operation, requested=len(ids))
        committed: list[TransitionOutcome] = []
        for appointment_id, outcome in zip(ids, outcomes, strict=True):
            if isinstance(outcome, BulkItemError):
                result.failed_ids.append(appointment_id)
                result.errors.append(outcome)
            else:
                result.succeeded_ids.append(appointment_id)
                committed.append(outcome)

        side_effect_results = await asyncio.gather(
            *(self.workflow.run_side_effects(outcome) for outcome in committed),
            return_exceptions=True,
        )
        for outcome, workflow_result in zip(committed, side_effect_results, strict=True):
            if isinstance(workflow_result, BaseException):
                logger.error(
                    "bulk_side_effects_failed",
                    operation=request.operation.value,
                    appointment_id=outcome.appointment.id,
                    error=str(workflow_result),
                )
                warnings = [f"side effects failed: {workflow_result}"]
            else:
                warnings = workflow_result.warnings
            for warning in warnings:
                result.notification_failures.append(
                    BulkItemError(
                        id=outcome.appointment.id,
                        error="SideEffectFailure",
                        message=warning,
                    )
                )

        logger.info(
            "bulk_operation_completed",
            operation=request.operation.value,
            actor_id=actor.user_id,
            requested=result.requested,
            succeeded=result.succeeded,
            failed=result.failed,
            notification_failures=len(result.notification_failures),
        )
        return result
