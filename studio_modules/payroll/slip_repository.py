"""
SlipRepository -- persistence and field-level mutation of compensation slips.

Contract:
    Creates, reads, mutates and deletes ``CompensationSlipModel`` rows and
    returns ``CompensationSlip`` DTOs.  Privilege-agnostic: authorization
    and the owner filter are applied by the caller.

Architecture: studio_modules/payroll.  Imports from payroll models, orm,
    calculator, workflows and kernel services.

Invariants enforced:
    - One slip per (cycle_id, user_id); ``create_many`` is all-or-nothing.
    - ``total_income``/``total_deduction``/``net_total`` are always
      recomputed from the component columns after an edit.
    - Employee responses only from PENDING.
    - Monetary edits are rejected once the owning cycle is PAID.
    - Stale ``expected_version`` -> ``OptimisticLockError``, nothing written.
    - Writers lock the cycle row before the slip row, the same order
      finalization uses.
    - Does NOT call ``session.commit()`` -- caller controls boundaries.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from studio_kernel.domain.clock import Clock, SystemClock
from studio_kernel.exceptions import (
    CycleNotFoundError,
    DuplicateSlipError,
    InvalidTransitionError,
    OptimisticLockError,
    SlipNotFoundError,
    UpstreamFailureError,
    ValidationError,
)
from studio_kernel.logging_config import get_logger
from studio_modules.payroll.calculator import compute_totals, to_money
from studio_modules.payroll.collaborators import FileStorage
from studio_modules.payroll.models import (
    MONETARY_PATCH_FIELDS,
    CompensationSlip,
    CycleStatus,
    EmployeeAction,
    FileUpload,
    SlipDraft,
    SlipPatch,
    SlipStatus,
)
from studio_modules.payroll.orm import CompensationSlipModel, PayrollCycleModel
from studio_modules.payroll.workflows import (
    COMPENSATION_SLIP_WORKFLOW,
    ROSTER_EDITABLE_CYCLE_STATES,
    require_transition,
)

logger = get_logger("modules.payroll.slip_repository")


def load_cycle(
    session: Session, cycle_id: UUID, for_update: bool = False
) -> PayrollCycleModel:
    """
    Return the cycle row, optionally locked (SELECT ... FOR UPDATE).

    A locked read refreshes an already-loaded instance so the status
    checked under the lock is the committed one.
    """
    stmt = select(PayrollCycleModel).where(PayrollCycleModel.id == cycle_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    model = session.scalars(stmt).one_or_none()
    if model is None:
        raise CycleNotFoundError(str(cycle_id))
    return model


_ENTITY = "CompensationSlip"

_RESPONSE_ACTIONS = {
    EmployeeAction.ACKNOWLEDGE: "acknowledge",
    EmployeeAction.DISPUTE: "dispute",
}


class SlipRepository:
    """Slip persistence with typed mutations.

    Contract:
        - ``create_many()`` bulk-inserts PENDING slips or raises
          ``DuplicateSlipError`` without inserting any.
        - ``apply_employee_response()`` / ``apply_administrative_edit()``
          validate fully before the first write.
        - Flushes only; the owning service commits or rolls back.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        file_storage: FileStorage | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._file_storage = file_storage

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_many(
        self,
        cycle_id: UUID,
        drafts: Sequence[SlipDraft],
        actor_id: UUID,
    ) -> list[CompensationSlip]:
        """Insert one PENDING slip per draft, all or nothing."""
        user_ids = [draft.user_id for draft in drafts]
        repeated = {uid for uid, count in Counter(user_ids).items() if count > 1}
        existing = set(
            self._session.scalars(
                select(CompensationSlipModel.user_id).where(
                    CompensationSlipModel.cycle_id == cycle_id,
                    CompensationSlipModel.user_id.in_(user_ids),
                )
            ).all()
        ) if user_ids else set()
        conflicts = sorted(str(uid) for uid in repeated | existing)
        if conflicts:
            logger.warning(
                "slip_create_duplicate",
                extra={"cycle_id": str(cycle_id), "user_ids": conflicts},
            )
            raise DuplicateSlipError(str(cycle_id), conflicts)

        models = [
            CompensationSlipModel.from_draft(draft, cycle_id, actor_id)
            for draft in drafts
        ]
        self._session.add_all(models)
        try:
            self._session.flush()
        except IntegrityError as exc:
            # Lost a race with a concurrent insert for the same pair
            logger.warning(
                "slip_create_integrity_conflict",
                extra={"cycle_id": str(cycle_id), "error": str(exc.orig)},
            )
            raise DuplicateSlipError(
                str(cycle_id), sorted(str(uid) for uid in user_ids)
            ) from exc

        logger.info(
            "slips_created",
            extra={"cycle_id": str(cycle_id), "slip_count": len(models)},
        )
        return [model.to_dto() for model in models]

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_for_cycle(
        self, cycle_id: UUID, user_id: UUID | None = None
    ) -> list[CompensationSlip]:
        stmt = select(CompensationSlipModel).where(
            CompensationSlipModel.cycle_id == cycle_id
        )
        if user_id is not None:
            stmt = stmt.where(CompensationSlipModel.user_id == user_id)
        stmt = stmt.order_by(CompensationSlipModel.user_id)
        return [model.to_dto() for model in self._session.scalars(stmt).all()]

    def get_slip(self, slip_id: UUID) -> CompensationSlip:
        return self.load(slip_id).to_dto()

    def load(self, slip_id: UUID, for_update: bool = False) -> CompensationSlipModel:
        """Return the ORM row, optionally row-locked."""
        stmt = select(CompensationSlipModel).where(CompensationSlipModel.id == slip_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        model = self._session.scalars(stmt).one_or_none()
        if model is None:
            raise SlipNotFoundError(str(slip_id))
        return model

    # ------------------------------------------------------------------
    # Employee response
    # ------------------------------------------------------------------

    def apply_employee_response(
        self,
        slip_id: UUID,
        action: EmployeeAction,
        actor_id: UUID,
        reason: str | None = None,
        expected_version: int | None = None,
    ) -> CompensationSlip:
        """
        Acknowledge or dispute a PENDING slip.

        Raises:
            InvalidTransitionError: slip is not PENDING.
            ValidationError: DISPUTE without a non-empty reason.
            OptimisticLockError: ``expected_version`` is stale.
        """
        model = self.load(slip_id, for_update=True)
        self._check_version(model, expected_version)
        require_transition(
            COMPENSATION_SLIP_WORKFLOW,
            _ENTITY,
            model.id,
            model.status,
            _RESPONSE_ACTIONS[action],
        )

        if action == EmployeeAction.DISPUTE:
            cleaned = (reason or "").strip()
            if not cleaned:
                raise ValidationError("reason", "a dispute requires a non-empty reason")
            model.status = SlipStatus.DISPUTED.value
            model.dispute_reason = cleaned
        else:
            model.status = SlipStatus.ACKNOWLEDGED.value
            model.acknowledged_at = self._clock.now()
        model.updated_by_id = actor_id

        self._flush(model, expected_version)
        logger.info(
            "slip_employee_response_applied",
            extra={
                "slip_id": str(model.id),
                "action": action.value,
                "status": model.status,
                "version": model.version,
            },
        )
        return model.to_dto()

    # ------------------------------------------------------------------
    # Administrative edit
    # ------------------------------------------------------------------

    def apply_administrative_edit(
        self,
        slip_id: UUID,
        patch: SlipPatch,
        actor_id: UUID,
        proof_file: FileUpload | None = None,
        expected_version: int | None = None,
    ) -> CompensationSlip:
        """
        Merge an HR patch into the slip and recompute its totals.

        The proof file, when supplied, is uploaded after all validation
        passes and before any field is written.

        Raises:
            ValidationError: invalid patch, or a proof file with nowhere to
                store it.
            InvalidTransitionError: monetary change on a PAID cycle, or a
                status change the slip workflow does not allow.
            UpstreamFailureError: file storage rejected the upload.
            OptimisticLockError: ``expected_version`` is stale.
        """
        patch.validate(allow_empty=proof_file is not None)
        if proof_file is not None and patch.transfer_proof_ref is not None:
            raise ValidationError(
                "transfer_proof_ref", "supply either a proof file or a reference, not both"
            )
        if proof_file is not None and self._file_storage is None:
            raise ValidationError("proof_file", "no file storage is configured")

        cycle_id = self.load(slip_id).cycle_id
        cycle_status = load_cycle(self._session, cycle_id, for_update=True).status
        model = self.load(slip_id, for_update=True)
        self._check_version(model, expected_version)

        if cycle_status == CycleStatus.PAID.value and patch.touches_money():
            raise InvalidTransitionError(
                _ENTITY,
                str(model.id),
                model.status,
                "edit_amounts",
                reason="owning cycle is PAID; amounts are frozen",
            )

        new_status = patch.status.value if patch.status is not None else None
        if new_status is not None and new_status != model.status:
            require_transition(
                COMPENSATION_SLIP_WORKFLOW,
                _ENTITY,
                model.id,
                model.status,
                "admin_set_status",
            )
            if new_status == SlipStatus.DISPUTED.value and not model.dispute_reason:
                raise ValidationError(
                    "status", "DISPUTED can only be restored on a slip with a dispute reason"
                )

        proof_ref = self._upload_proof(model, proof_file) if proof_file else None

        for name in MONETARY_PATCH_FIELDS:
            value = getattr(patch, name)
            if value is not None:
                setattr(model, name, to_money(value) if name != "ot_hours" else value)

        if new_status is not None and new_status != model.status:
            if model.status == SlipStatus.DISPUTED.value:
                model.dispute_reason = None
            if new_status == SlipStatus.ACKNOWLEDGED.value and model.acknowledged_at is None:
                model.acknowledged_at = self._clock.now()
            elif new_status == SlipStatus.PENDING.value:
                model.acknowledged_at = None
            model.status = new_status

        if proof_ref is not None:
            model.transfer_proof_ref = proof_ref
        elif patch.transfer_proof_ref is not None:
            model.transfer_proof_ref = patch.transfer_proof_ref
        if patch.note is not None:
            model.note = patch.note

        self._recompute_totals(model)
        model.updated_by_id = actor_id

        self._flush(model, expected_version)
        logger.info(
            "slip_administrative_edit_applied",
            extra={
                "slip_id": str(model.id),
                "fields": sorted(patch.changes()),
                "proof_uploaded": proof_ref is not None,
                "net_total": str(model.net_total),
                "status": model.status,
                "version": model.version,
            },
        )
        return model.to_dto()

    # ------------------------------------------------------------------
    # Finalization / roster
    # ------------------------------------------------------------------

    def mark_all_paid(self, cycle_id: UUID, actor_id: UUID) -> list[CompensationSlipModel]:
        """Freeze every slip in the cycle to PAID; returns the frozen rows."""
        models = list(
            self._session.scalars(
                select(CompensationSlipModel)
                .where(CompensationSlipModel.cycle_id == cycle_id)
                .order_by(CompensationSlipModel.user_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).all()
        )
        for model in models:
            require_transition(
                COMPENSATION_SLIP_WORKFLOW, _ENTITY, model.id, model.status, "mark_paid"
            )
            model.status = SlipStatus.PAID.value
            model.updated_by_id = actor_id
        self._session.flush()
        logger.info(
            "slips_marked_paid",
            extra={"cycle_id": str(cycle_id), "slip_count": len(models)},
        )
        return models

    def delete(self, slip_id: UUID) -> None:
        """Hard-delete a slip whose cycle is still DRAFT."""
        model = self.load(slip_id, for_update=True)
        cycle: PayrollCycleModel = model.cycle
        if cycle.status not in ROSTER_EDITABLE_CYCLE_STATES:
            raise InvalidTransitionError(
                "PayrollCycle",
                str(cycle.id),
                cycle.status,
                "delete_slip",
                reason="slips can only be removed from a DRAFT cycle",
            )
        cycle.slips.remove(model)
        self._session.flush()
        logger.info(
            "slip_deleted",
            extra={"slip_id": str(slip_id), "cycle_id": str(cycle.id)},
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _check_version(
        self, model: CompensationSlipModel, expected_version: int | None
    ) -> None:
        if expected_version is not None and model.version != expected_version:
            logger.warning(
                "slip_version_conflict",
                extra={
                    "slip_id": str(model.id),
                    "expected_version": expected_version,
                    "actual_version": model.version,
                },
            )
            raise OptimisticLockError(
                _ENTITY, str(model.id), expected_version, model.version
            )

    def _flush(self, model: CompensationSlipModel, expected_version: int | None) -> None:
        try:
            self._session.flush()
        except StaleDataError as exc:
            raise OptimisticLockError(_ENTITY, str(model.id), expected_version) from exc

    def _upload_proof(self, model: CompensationSlipModel, proof_file: FileUpload) -> str:
        try:
            ref = self._file_storage.upload(proof_file)
        except Exception as exc:
            logger.warning(
                "transfer_proof_upload_failed",
                extra={
                    "slip_id": str(model.id),
                    "proof_filename": proof_file.filename,
                    "error": str(exc),
                },
            )
            raise UpstreamFailureError("file_storage", "upload", str(exc)) from exc
        logger.info(
            "transfer_proof_uploaded",
            extra={"slip_id": str(model.id), "proof_filename": proof_file.filename, "ref": ref},
        )
        return ref

    @staticmethod
    def _recompute_totals(model: CompensationSlipModel) -> None:
        total_income, total_deduction, net_total = compute_totals(
            base_salary=model.base_salary,
            ot_pay=model.ot_pay,
            bonus=model.bonus,
            commission=model.commission,
            allowance=model.allowance,
            tax=model.tax,
            social_security_contribution=model.social_security_contribution,
            disciplinary_deduction=model.disciplinary_deduction,
            leave_deduction=model.leave_deduction,
            advance_payment=model.advance_payment,
        )
        model.total_income = total_income
        model.total_deduction = total_deduction
        model.net_total = net_total
