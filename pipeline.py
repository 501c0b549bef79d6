"""
Scheduled Test Pipeline — generates and announces recurring practice tests.

One invocation:
  1. lists due schedules (the only step allowed to fail the whole run)
  2. per schedule: digest → synthesize → persist → mark run → notify user
     → escalate to guardian → pending becomes notified
  3. sweeps tests that were persisted earlier but never announced

Per schedule the states advance in this order and a failure stops that
schedule only:

    DUE → DIGESTED → SYNTHESIZED → PERSISTED → RUN_MARKED → USER_NOTIFIED
        → ESCALATED | SKIPPED_ESCALATION → DONE

A schedule that fails before RUN_MARKED stays due and is retried by the next
run (natural backoff via the due threshold). Duplicate reminders after a crash
are possible and accepted; duplicate tests are not: a pending test persisted
for a schedule after its last run is reused instead of generating a new one.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta

from ai_resilience import LLMClient
from audit import PipelineAuditDB
from db_stores import (
    GeneratedTestStoreDB,
    MaterialStoreDB,
    NotificationLogDB,
    ScheduleStoreDB,
    UserStoreDB,
)
from errors import EscalationError, NotificationError, PersistenceError, PipelineError
from escalation import should_notify_guardian
from material_digest import MaterialDigestBuilder
from models import Schedule, UserProfile, summarize_payload, to_iso, utcnow
from notifier import NotificationDispatcher, WhatsAppGateway
from synthesizer import QuestionSynthesizer

logger = logging.getLogger(__name__)

DUE = "DUE"
DIGESTED = "DIGESTED"
SYNTHESIZED = "SYNTHESIZED"
PERSISTED = "PERSISTED"
RUN_MARKED = "RUN_MARKED"
USER_NOTIFIED = "USER_NOTIFIED"
ESCALATED = "ESCALATED"
SKIPPED_ESCALATION = "SKIPPED_ESCALATION"
DONE = "DONE"

OUTCOME_DONE = "done"
OUTCOME_ABORTED = "aborted"


@dataclass
class ScheduleOutcome:
    """What happened to one schedule (or one swept test) in a run."""

    schedule_id: int | None
    user_id: int
    state: str = DUE
    outcome: str = OUTCOME_ABORTED
    test_id: int | None = None
    error_type: str = ""
    detail: str = ""
    user_notification: str = ""
    guardian_notification: str = ""
    resumed: bool = False
    swept: bool = False


@dataclass
class PipelineReport:
    run_id: str
    started_at: datetime
    due_count: int = 0
    outcomes: list[ScheduleOutcome] = field(default_factory=list)
    swept: list[ScheduleOutcome] = field(default_factory=list)
    finished_at: datetime | None = None

    @property
    def completed(self) -> int:
        return sum(1 for o in self.outcomes if o.outcome == OUTCOME_DONE)

    @property
    def aborted(self) -> int:
        return sum(1 for o in self.outcomes if o.outcome == OUTCOME_ABORTED)

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "started_at": to_iso(self.started_at),
            "finished_at": to_iso(self.finished_at),
            "due": self.due_count,
            "completed": self.completed,
            "aborted": self.aborted,
            "swept": len(self.swept),
            "schedules": [asdict(o) for o in self.outcomes],
            "swept_tests": [asdict(o) for o in self.swept],
        }


class ScheduledTestPipeline:
    """Drives one invocation. All collaborators are injected."""

    def __init__(
        self,
        schedules: ScheduleStoreDB,
        digest: MaterialDigestBuilder,
        synthesizer: QuestionSynthesizer,
        tests: GeneratedTestStoreDB,
        users: UserStoreDB,
        dispatcher: NotificationDispatcher,
        audit: PipelineAuditDB | None = None,
        clock=utcnow,
        question_count: int = 5,
        question_type: str = "MCQ",
    ) -> None:
        self.schedules = schedules
        self.digest = digest
        self.synthesizer = synthesizer
        self.tests = tests
        self.users = users
        self.dispatcher = dispatcher
        self.audit = audit
        self.clock = clock
        self.question_count = question_count
        self.question_type = question_type

    def run(self) -> PipelineReport:
        """Process every due schedule, then sweep unannounced tests.

        Raises DiscoveryError if due schedules cannot be listed.
        """
        run_id = uuid.uuid4().hex[:12]
        now = self.clock()
        report = PipelineReport(run_id=run_id, started_at=now)
        logger.info("Scheduler started at %s", to_iso(now), extra={"run_id": run_id})

        due = self.schedules.fetch_due_schedules(now=now)
        report.due_count = len(due)
        if due:
            logger.info("Found schedules due: %d", len(due), extra={"run_id": run_id})
        else:
            logger.info("No schedules due.", extra={"run_id": run_id})

        handled: set[int] = set()
        for schedule in due:
            outcome = self.process_schedule(schedule, now, run_id)
            if outcome.test_id is not None:
                handled.add(outcome.test_id)
            report.outcomes.append(outcome)

        report.swept = self.sweep_pending(now, run_id, exclude=handled)
        report.finished_at = self.clock()
        logger.info(
            "Scheduler finished: %d due, %d done, %d aborted, %d swept",
            report.due_count, report.completed, report.aborted, len(report.swept),
            extra={"run_id": run_id},
        )
        return report

    # ── per schedule ────────────────────────────────────────────────

    def process_schedule(self, schedule: Schedule, now: datetime, run_id: str) -> ScheduleOutcome:
        user_id = schedule.owner_user_id
        outcome = ScheduleOutcome(schedule_id=schedule.id, user_id=user_id)
        step = DUE
        logger.info("Processing schedule %s user %s", schedule.id, user_id,
                    extra=self._ctx(run_id, schedule.id, user_id, DUE))
        try:
            existing = self.tests.unmarked_for_schedule(schedule)
            if existing is not None:
                logger.info("Resuming schedule %s with unannounced test %s", schedule.id, existing.id,
                            extra=self._ctx(run_id, schedule.id, user_id, PERSISTED))
                outcome.resumed = True
                outcome.test_id = existing.id
                outcome.state = PERSISTED
                payload, question_type = existing.payload, existing.question_type
            else:
                step = DIGESTED
                materials = self.digest.recent_materials(user_id)
                prompt = self.digest.build_prompt(materials, self.question_count, self.question_type)
                outcome.state = DIGESTED

                step = SYNTHESIZED
                payload = self.synthesizer.synthesize(prompt, self.question_count, self.question_type)
                question_type = self.question_type
                outcome.state = SYNTHESIZED

                step = PERSISTED
                outcome.test_id = self.tests.persist(
                    schedule, user_id, payload, scheduled_for=now, question_type=question_type,
                )
                outcome.state = PERSISTED
                logger.info("Inserted scheduled test %s for schedule %s", outcome.test_id, schedule.id,
                            extra=self._ctx(run_id, schedule.id, user_id, PERSISTED))

            step = RUN_MARKED
            if not self.schedules.mark_schedule_run(schedule.id, at=now):
                logger.warning("Schedule %s not advanced; it will be picked up again next run",
                               schedule.id, extra=self._ctx(run_id, schedule.id, user_id, RUN_MARKED))
            outcome.state = RUN_MARKED

            step = USER_NOTIFIED
            self._deliver(outcome, payload, question_type, now, run_id)
        except PipelineError as e:
            self._abort(outcome, step, e, run_id)
        except Exception as e:
            logger.exception("Unexpected failure in schedule %s", schedule.id,
                             extra=self._ctx(run_id, schedule.id, user_id, step))
            self._abort(outcome, step, e, run_id)
        else:
            self._record(run_id, outcome)
        return outcome

    # ── pending sweep ───────────────────────────────────────────────

    def sweep_pending(self, now: datetime, run_id: str, exclude=()) -> list[ScheduleOutcome]:
        """Announce tests persisted by an earlier run that never got notified."""
        try:
            pending = [t for t in self.tests.pending_due(now) if t.id not in exclude]
        except Exception as e:
            logger.error("Pending sweep could not list tests: %s", e, extra={"run_id": run_id})
            return []

        results = []
        for test in pending:
            outcome = ScheduleOutcome(
                schedule_id=test.schedule_id,
                user_id=test.owner_user_id,
                test_id=test.id,
                state=PERSISTED,
                swept=True,
            )
            logger.info("Sweeping unannounced test %s", test.id,
                        extra=self._ctx(run_id, test.schedule_id, test.owner_user_id, PERSISTED))
            try:
                self._deliver(outcome, test.payload, test.question_type, now, run_id)
            except Exception as e:
                logger.exception("Unexpected failure sweeping test %s", test.id,
                                 extra=self._ctx(run_id, test.schedule_id, test.owner_user_id, USER_NOTIFIED))
                self._abort(outcome, USER_NOTIFIED, e, run_id)
            else:
                self._record(run_id, outcome)
            results.append(outcome)
        return results

    # ── notification steps ──────────────────────────────────────────

    def _deliver(self, outcome: ScheduleOutcome, payload, question_type: str,
                 now: datetime, run_id: str) -> None:
        """USER_NOTIFIED → ESCALATED | SKIPPED_ESCALATION → DONE. Never raises pipeline errors."""
        ctx = self._ctx(run_id, outcome.schedule_id, outcome.user_id, USER_NOTIFIED)
        summary = summarize_payload(payload, question_type)

        try:
            result = self.dispatcher.notify_user(outcome.user_id, outcome.test_id, summary)
            outcome.user_notification = result.status
        except NotificationError as e:
            logger.error("User notification for test %s failed: %s", outcome.test_id, e, extra=ctx)
            outcome.user_notification = "error"
        outcome.state = USER_NOTIFIED

        try:
            profile = self._load_profile(outcome.user_id)
            if should_notify_guardian(profile):
                try:
                    result = self.dispatcher.notify_guardian(profile, outcome.test_id, summary)
                    outcome.guardian_notification = result.status
                except NotificationError as e:
                    logger.error("Guardian notification for test %s failed: %s", outcome.test_id, e,
                                 extra=ctx)
                    outcome.guardian_notification = "error"
                outcome.state = ESCALATED
            else:
                outcome.guardian_notification = "not_eligible"
                outcome.state = SKIPPED_ESCALATION
        except EscalationError as e:
            logger.error("Escalation check for user %s failed: %s", outcome.user_id, e, extra=ctx)
            outcome.guardian_notification = "error"
            outcome.state = SKIPPED_ESCALATION

        try:
            if not self.tests.mark_notified(outcome.test_id, at=now):
                logger.warning("Test %s was no longer pending when marked notified", outcome.test_id,
                               extra=ctx)
        except Exception as e:
            logger.error("Could not mark test %s notified, next sweep will retry: %s",
                         outcome.test_id, e, extra=ctx)

        outcome.state = DONE
        outcome.outcome = OUTCOME_DONE

    def _load_profile(self, user_id: int) -> UserProfile | None:
        try:
            return self.users.profile(user_id)
        except Exception as e:
            raise EscalationError(f"could not load profile for user {user_id}: {e}") from e

    # ── bookkeeping ─────────────────────────────────────────────────

    def _abort(self, outcome: ScheduleOutcome, step: str, exc: Exception, run_id: str) -> None:
        outcome.outcome = OUTCOME_ABORTED
        outcome.state = step
        outcome.error_type = exc.__class__.__name__
        outcome.detail = str(exc)
        ctx = self._ctx(run_id, outcome.schedule_id, outcome.user_id, step)
        if isinstance(exc, PersistenceError):
            logger.critical("Generated test for schedule %s was lost at %s: %s",
                            outcome.schedule_id, step, exc, extra=ctx)
        else:
            logger.error("Schedule %s aborted at %s: %s: %s",
                         outcome.schedule_id, step, outcome.error_type, exc, extra=ctx)
        self._record(run_id, outcome)

    def _record(self, run_id: str, outcome: ScheduleOutcome) -> None:
        if self.audit is None:
            return
        self.audit.log_event(
            run_id,
            state=outcome.state,
            outcome=outcome.outcome,
            schedule_id=outcome.schedule_id,
            test_id=outcome.test_id,
            user_id=outcome.user_id,
            error_type=outcome.error_type,
            detail=outcome.detail,
        )

    @staticmethod
    def _ctx(run_id: str, schedule_id, user_id, state: str) -> dict:
        return {"run_id": run_id, "schedule_id": schedule_id, "user_id": user_id, "state": state}


def build_pipeline(config, db, clock=utcnow, llm: LLMClient | None = None,
                   gateway: WhatsAppGateway | None = None) -> ScheduledTestPipeline:
    """Wire a pipeline from app config and an open connection."""
    users = UserStoreDB(db)
    return ScheduledTestPipeline(
        schedules=ScheduleStoreDB(
            db, due_threshold=timedelta(hours=float(config.get("DUE_THRESHOLD_HOURS", 23))),
        ),
        digest=MaterialDigestBuilder(
            MaterialStoreDB(db), limit=int(config.get("MATERIAL_DIGEST_LIMIT", 5)),
        ),
        synthesizer=QuestionSynthesizer(llm or LLMClient.from_config(config)),
        tests=GeneratedTestStoreDB(db),
        users=users,
        dispatcher=NotificationDispatcher(
            gateway or WhatsAppGateway.from_config(config), users, NotificationLogDB(db),
        ),
        audit=PipelineAuditDB(db),
        clock=clock,
        question_count=int(config.get("QUESTION_COUNT", 5)),
        question_type=config.get("QUESTION_TYPE", "MCQ"),
    )
