"""Persistence for the evaluation workflow.

The evaluator only talks to a :class:`Repository`; :class:`SqlRepository` is
the SQLAlchemy implementation. Every mutating method commits before returning
so no transaction stays open across the model call.
"""
from __future__ import annotations

import logging
from typing import Any, Protocol

from sqlalchemy import delete, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pitchreview.errors import PersistenceError, StaleEvaluation
from pitchreview.models import Company, Evaluation, Submission
from pitchreview.utils import utcnow

log = logging.getLogger(__name__)

COMPANY_IDENTITY = ("normalized_name", "source", "owner_id")


class Repository(Protocol):
    def get_submission(self, submission_id: str) -> Submission | None: ...

    def get_evaluation(self, submission_id: str) -> Evaluation | None: ...

    def begin_run(self, submission: Submission) -> int: ...

    def save_evaluation(self, evaluation: Evaluation) -> Evaluation: ...

    def mark_completed(self, submission: Submission, company_id: int | None) -> None: ...

    def mark_failed(self, submission: Submission, message: str, raw_output: str | None = None) -> None: ...

    def upsert_company(self, values: dict[str, Any]) -> Company: ...


class SqlRepository:
    def __init__(self, session: Session):
        self.session = session

    # -- reads ---------------------------------------------------------------

    def get_submission(self, submission_id: str) -> Submission | None:
        return self.session.execute(
            select(Submission).where(Submission.id == submission_id)
        ).scalars().first()

    def get_evaluation(self, submission_id: str) -> Evaluation | None:
        return self.session.execute(
            select(Evaluation).where(Evaluation.submission_id == submission_id)
        ).scalars().first()

    # -- writes --------------------------------------------------------------

    def _commit(self, what: str) -> None:
        try:
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise PersistenceError(f"Failed to {what}: {exc}") from exc

    def begin_run(self, submission: Submission) -> int:
        """Mark the submission processing and hand out the next run ticket."""
        try:
            self.session.execute(
                update(Submission)
                .where(Submission.id == submission.id)
                .values(run_seq=Submission.run_seq + 1, status="processing", error="", updated_at=utcnow())
            )
            run_seq = self.session.execute(
                select(Submission.run_seq).where(Submission.id == submission.id)
            ).scalar_one()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise PersistenceError(f"Failed to start evaluation run: {exc}") from exc
        self._commit("start evaluation run")
        self.session.refresh(submission)
        return run_seq

    def save_evaluation(self, evaluation: Evaluation) -> Evaluation:
        """Replace the stored evaluation unless a later run already wrote one."""
        try:
            self.session.execute(
                delete(Evaluation).where(
                    Evaluation.submission_id == evaluation.submission_id,
                    Evaluation.run_seq <= evaluation.run_seq,
                )
            )
            newer = self.session.execute(
                select(Evaluation.run_seq).where(Evaluation.submission_id == evaluation.submission_id)
            ).scalar_one_or_none()
            if newer is not None:
                self.session.rollback()
                raise StaleEvaluation(
                    f"Run {evaluation.run_seq} superseded by run {newer} for submission {evaluation.submission_id}"
                )
            self.session.add(evaluation)
            self.session.flush()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise PersistenceError(f"Failed to store evaluation: {exc}") from exc
        self._commit("store evaluation")
        owner = self.session.get(Submission, evaluation.submission_id)
        if owner is not None:
            self.session.expire(owner, ["evaluation"])
        return evaluation

    def mark_completed(self, submission: Submission, company_id: int | None) -> None:
        submission.status = "completed"
        submission.error = ""
        submission.raw_output = ""
        submission.analyzed_at = utcnow()
        if company_id is not None:
            submission.company_id = company_id
        self._commit("mark submission completed")

    def mark_failed(self, submission: Submission, message: str, raw_output: str | None = None) -> None:
        submission.status = "failed"
        submission.error = message
        if raw_output is not None:
            submission.raw_output = raw_output
        self._commit("mark submission failed")

    def upsert_company(self, values: dict[str, Any]) -> Company:
        """Insert or update the Company identified by (normalized name, source, owner)."""
        dialect = self.session.get_bind().dialect.name
        insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
        values = {**values, "updated_at": utcnow()}
        stmt = insert(Company).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=list(COMPANY_IDENTITY),
            set_={k: stmt.excluded[k] for k in values if k not in COMPANY_IDENTITY},
        ).returning(Company.id)
        try:
            company_id = self.session.execute(stmt).scalar_one()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise PersistenceError(f"Failed to upsert company: {exc}") from exc
        self._commit("upsert company")
        company = self.session.get(Company, company_id, populate_existing=True)
        log.info("Company %s upserted (%s / %s)", company_id, values.get("name"), values.get("source"))
        return company  # type: ignore[return-value]
