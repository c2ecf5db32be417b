"""
Quota Ledger

Tracks per-user, per-day usage counters and enforces the daily ceilings of
the user's quota tier before dispatch. Consumption is recorded after the
provider call completes.

Counters are only ever incremented with SQL-level atomic updates
(``col = col + n``), never read-modify-write in Python. Each logical request
commits at most once: ``(user_id, request_id)`` is the primary key of
``usage_commits`` and is inserted in the same transaction as the increment.
Request ids are scoped to the user, so two users may reuse the same id.

Check-then-commit is not atomic across the provider call. Two concurrent
requests for the same user can both pass ``check_capacity`` and together
overshoot a ceiling by the size of the overlap. Limits are fair-use
ceilings, not hard allocations, so this soft bound is accepted.
"""

import logging
from dataclasses import dataclass, asdict
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from promptopt.database import SessionLocal
from promptopt.errors import LedgerCommitFailed, QuotaRejected, ValidationError
from promptopt.models.usage import QuotaOverride, UsageCommit, UsageRecord
from promptopt.providers.catalog import RequestClass

logger = logging.getLogger(__name__)

LIMIT_FIELDS = ("quick_daily_max", "deep_daily_max", "token_daily_max", "api_calls_daily_max")


@dataclass(frozen=True)
class QuotaLimits:
    """Effective daily ceilings for a user."""
    tier: str
    quick_daily_max: int
    deep_daily_max: int
    token_daily_max: int
    api_calls_daily_max: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CapacityDecision:
    """
    Result of a pre-dispatch capacity check.

    When denied, ``dimension`` names the ceiling that would be exceeded
    (quick, deep, tokens or calls) and ``used``/``limit`` describe it.
    """
    allowed: bool
    limits: QuotaLimits
    dimension: Optional[str] = None
    used: int = 0
    limit: int = 0

    def to_error(self) -> QuotaRejected:
        return QuotaRejected(self.dimension, self.used, self.limit)


@dataclass(frozen=True)
class CommittedRequest:
    """A request whose usage is already on the ledger, with the result it delivered."""
    request_id: str
    request_class: RequestClass
    day: date
    tokens_used: int
    provider: Optional[str]
    model: Optional[str]
    text: Optional[str]


class QuotaLedger:
    """Per-user daily usage ledger backed by the relational store."""

    def __init__(self, config, session_factory: Callable[[], Session] = SessionLocal):
        """
        Args:
            config: MeteringConfig instance
            session_factory: Callable returning a new SQLAlchemy session
        """
        self.config = config
        self.session_factory = session_factory

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def _get_or_create_record(self, db: Session, user_id: str, day: date) -> UsageRecord:
        """Fetch the (user, day) record, inserting a zero-valued one if absent."""
        record = db.query(UsageRecord).filter(
            UsageRecord.user_id == user_id,
            UsageRecord.day == day,
        ).first()

        if record is not None:
            return record

        record = UsageRecord(
            user_id=user_id,
            day=day,
            quick_count=0,
            deep_count=0,
            tokens_used=0,
            api_calls=0,
        )
        db.add(record)
        try:
            db.commit()
        except IntegrityError:
            # Another request created it first
            db.rollback()
            return db.query(UsageRecord).filter(
                UsageRecord.user_id == user_id,
                UsageRecord.day == day,
            ).one()

        db.refresh(record)
        logger.debug(f"Created usage record for user={user_id} day={day}")
        return record

    def today_record(self, user_id: str, day: date) -> UsageRecord:
        """Return the user's record for ``day``, creating it if needed."""
        db = self.session_factory()
        try:
            return self._get_or_create_record(db, user_id, day)
        finally:
            db.close()

    def history(self, user_id: str, from_day: date, to_day: date) -> List[UsageRecord]:
        """
        Stored records for a user within ``[from_day, to_day]``, oldest first.

        Days with no activity have no row and are not synthesized.
        """
        if from_day > to_day:
            return []

        db = self.session_factory()
        try:
            return db.query(UsageRecord).filter(
                UsageRecord.user_id == user_id,
                UsageRecord.day >= from_day,
                UsageRecord.day <= to_day,
            ).order_by(UsageRecord.day.asc()).all()
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Limits
    # ------------------------------------------------------------------

    def _resolve_limits(self, override: Optional[QuotaOverride]) -> QuotaLimits:
        tier = (override.tier if override and override.tier else self.config.default_tier).lower()
        base = self.config.get_tier_limits(tier)

        values = {}
        for name in LIMIT_FIELDS:
            value = getattr(override, name) if override is not None else None
            values[name] = value if value is not None else getattr(base, name)

        return QuotaLimits(tier=tier, **values)

    def get_limits(self, user_id: str) -> QuotaLimits:
        """Effective limits: per-user override, else tier default, else global default."""
        db = self.session_factory()
        try:
            override = db.get(QuotaOverride, user_id)
            return self._resolve_limits(override)
        finally:
            db.close()

    def set_limits(
        self,
        user_id: str,
        tier: Optional[str] = None,
        updated_by: Optional[str] = None,
        **ceilings: Optional[int],
    ) -> QuotaLimits:
        """
        Write a user's tier and/or individual ceiling overrides.

        Only the admin path calls this. Arguments left as None keep their
        current override value.

        Raises:
            ValidationError: unknown tier, unknown ceiling name or negative ceiling
        """
        if tier is not None and tier.lower() not in self.config.tier_limits:
            raise ValidationError("tier", f"Unknown tier '{tier}'")

        for name, value in ceilings.items():
            if name not in LIMIT_FIELDS:
                raise ValidationError(name, f"Unknown quota ceiling '{name}'")
            if value is not None and value < 0:
                raise ValidationError(name, f"'{name}' must be zero or positive")

        db = self.session_factory()
        try:
            override = db.get(QuotaOverride, user_id)
            if override is None:
                override = QuotaOverride(user_id=user_id)
                db.add(override)

            if tier is not None:
                override.tier = tier.lower()
            for name, value in ceilings.items():
                if value is not None:
                    setattr(override, name, value)
            override.updated_by = updated_by
            override.updated_at = datetime.utcnow()

            db.commit()
            db.refresh(override)
            limits = self._resolve_limits(override)
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()

        logger.info(f"Quota limits for user={user_id} set by {updated_by or 'unknown'}: {limits}")
        return limits

    # ------------------------------------------------------------------
    # Enforcement
    # ------------------------------------------------------------------

    def check_capacity(
        self,
        user_id: str,
        request_class: RequestClass,
        day: date,
    ) -> CapacityDecision:
        """
        Decide whether one more request of ``request_class`` fits today's ceilings.

        A dimension denies when one more unit would exceed the ceiling:
        ``current + 1 > ceiling``. Any user strictly below every ceiling is
        allowed; the actual token count is only known after the call and may
        carry the tokens counter past its ceiling once. Dimensions are checked
        in the order class counter, tokens, calls; the first failing one is
        reported.
        """
        request_class = RequestClass.parse(request_class)

        db = self.session_factory()
        try:
            limits = self._resolve_limits(db.get(QuotaOverride, user_id))
            record = self._get_or_create_record(db, user_id, day)

            if request_class is RequestClass.QUICK:
                class_check = ("quick", record.quick_count, 1, limits.quick_daily_max)
            else:
                class_check = ("deep", record.deep_count, 1, limits.deep_daily_max)

            checks = [
                class_check,
                ("tokens", record.tokens_used, 1, limits.token_daily_max),
                ("calls", record.api_calls, 1, limits.api_calls_daily_max),
            ]
        finally:
            db.close()

        for dimension, current, increment, ceiling in checks:
            if current + increment > ceiling:
                logger.info(
                    f"Quota exceeded for user={user_id} day={day}: "
                    f"{dimension} {current}/{ceiling}"
                )
                return CapacityDecision(
                    allowed=False,
                    limits=limits,
                    dimension=dimension,
                    used=current,
                    limit=ceiling,
                )

        return CapacityDecision(allowed=True, limits=limits)

    def commit(
        self,
        user_id: str,
        request_class: RequestClass,
        tokens_used: int,
        request_id: str,
        day: date,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        text: Optional[str] = None,
    ) -> bool:
        """
        Record a completed request's consumption.

        ``provider``, ``model`` and ``text`` describe the delivered result and
        are kept with the idempotency key for ``find_commit``.

        Returns:
            True if counters were incremented, False if the user already
            committed ``request_id`` (counters untouched)

        Raises:
            LedgerCommitFailed: the store rejected the write
        """
        request_class = RequestClass.parse(request_class)
        tokens_used = max(int(tokens_used or 0), 0)

        db = self.session_factory()
        try:
            self._get_or_create_record(db, user_id, day)

            db.add(UsageCommit(
                request_id=request_id,
                user_id=user_id,
                day=day,
                request_class=request_class.value,
                tokens_used=tokens_used,
                provider=provider,
                model=model,
                text=text,
            ))
            try:
                db.flush()
            except IntegrityError:
                db.rollback()
                logger.info(f"Duplicate commit ignored for user={user_id} request {request_id}")
                return False

            quick = 1 if request_class is RequestClass.QUICK else 0
            deep = 1 if request_class is RequestClass.DEEP else 0
            result = db.execute(
                update(UsageRecord)
                .where(UsageRecord.user_id == user_id, UsageRecord.day == day)
                .values(
                    quick_count=UsageRecord.quick_count + quick,
                    deep_count=UsageRecord.deep_count + deep,
                    tokens_used=UsageRecord.tokens_used + tokens_used,
                    api_calls=UsageRecord.api_calls + 1,
                    updated_at=datetime.utcnow(),
                )
            )
            if result.rowcount != 1:
                db.rollback()
                raise LedgerCommitFailed(request_id, "usage record missing")

            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Error committing usage for request {request_id}: {e}")
            raise LedgerCommitFailed(request_id, str(e)) from e
        finally:
            db.close()

        logger.debug(
            f"Committed usage for user={user_id} day={day}: "
            f"{request_class.value} +1, tokens +{tokens_used}"
        )
        return True

    def find_commit(self, user_id: str, request_id: str) -> Optional[CommittedRequest]:
        """Return the user's earlier commit for ``request_id``, if any."""
        db = self.session_factory()
        try:
            commit = db.get(UsageCommit, (user_id, request_id))
            if commit is None:
                return None
            return CommittedRequest(
                request_id=commit.request_id,
                request_class=RequestClass.parse(commit.request_class),
                day=commit.day,
                tokens_used=commit.tokens_used,
                provider=commit.provider,
                model=commit.model,
                text=commit.text,
            )
        finally:
            db.close()

    def prune_commits(self, before_day: date) -> int:
        """Delete idempotency keys for days strictly before ``before_day``."""
        db = self.session_factory()
        try:
            result = db.execute(delete(UsageCommit).where(UsageCommit.day < before_day))
            db.commit()
            deleted = result.rowcount or 0
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()

        logger.info(f"Pruned {deleted} idempotency keys older than {before_day}")
        return deleted
