"""Persistence layer for plans, subscriptions and change requests."""
from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import psycopg2
import psycopg2.errors
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from .exceptions import SubscriptionConflictError, SubscriptionNotFoundError
from .models import (
    PaymentStatus,
    PlanFeatures,
    PlanType,
    RequestStatus,
    RequestType,
    SubscriptionFilters,
    SubscriptionPage,
    SubscriptionPlan,
    SubscriptionRequest,
    SubscriptionStatus,
    UsageCounter,
    UserSubscription,
)
from .protocols import PlanMutator, RequestResolver, SubscriptionMutator

try:  # pragma: no cover - resolve connection helper when imported from FastAPI app
    from backend.app_context import get_conn
except ModuleNotFoundError as exc:  # pragma: no cover
    if exc.name != "backend":
        raise
    from ...app_context import get_conn  # type: ignore[no-redef]


SCHEMA_PATH = Path(__file__).with_name("schema.sql")

_COUNTER_COLUMNS = {
    UsageCounter.BROWSE: "browse_count_used",
    UsageCounter.LISTING: "listing_count_used",
}

_SUBSCRIPTION_COLUMNS = (
    "id",
    "account_id",
    "plan_id",
    "plan_name",
    "status",
    "payment_status",
    "start_date",
    "end_date",
    "browse_count_used",
    "listing_count_used",
    "last_usage_reset_at",
    "assigned_by",
    "notes",
    "suspension_reason",
    "is_current",
    "superseded_at",
    "created_at",
    "updated_at",
)


@contextmanager
def managed_connection(conn: Optional[PgConnection] = None):
    """Context manager that manages transaction boundaries for optional connections."""

    if conn is not None:
        yield conn, False
        return

    connection = get_conn()
    try:
        yield connection, True
        connection.commit()
    except Exception:
        connection.rollback()
        raise
    finally:
        connection.close()


def _row_to_plan(row: dict) -> SubscriptionPlan:
    return SubscriptionPlan(
        id=row["id"],
        name=row["name"],
        display_name=row["display_name"],
        description=row.get("description") or "",
        plan_type=PlanType(row["plan_type"]),
        price=int(row["price"]),
        currency=row["currency"],
        duration_days=int(row["duration_days"]),
        features=PlanFeatures.model_validate(row["features"]),
        is_active=bool(row["is_active"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_subscription(row: dict) -> UserSubscription:
    return UserSubscription(
        id=row["id"],
        account_id=row["account_id"],
        plan_id=row["plan_id"],
        plan_name=row["plan_name"],
        status=SubscriptionStatus(row["status"]),
        payment_status=PaymentStatus(row["payment_status"]),
        start_date=row["start_date"],
        end_date=row["end_date"],
        browse_count_used=int(row["browse_count_used"]),
        listing_count_used=int(row["listing_count_used"]),
        last_usage_reset_at=row.get("last_usage_reset_at"),
        assigned_by=row.get("assigned_by"),
        notes=row.get("notes"),
        suspension_reason=row.get("suspension_reason"),
        is_current=bool(row["is_current"]),
        superseded_at=row.get("superseded_at"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_request(row: dict) -> SubscriptionRequest:
    return SubscriptionRequest(
        id=row["id"],
        account_id=row["account_id"],
        requested_plan_id=row["requested_plan_id"],
        requested_plan_name=row["requested_plan_name"],
        current_plan_id=row.get("current_plan_id"),
        request_type=RequestType(row["request_type"]),
        status=RequestStatus(row["status"]),
        user_notes=row.get("user_notes"),
        admin_notes=row.get("admin_notes"),
        resolved_by=row.get("resolved_by"),
        created_at=row["created_at"],
        resolved_at=row.get("resolved_at"),
    )


def _subscription_params(subscription: UserSubscription) -> Dict[str, Any]:
    return {
        "id": subscription.id,
        "account_id": subscription.account_id,
        "plan_id": subscription.plan_id,
        "plan_name": subscription.plan_name,
        "status": subscription.status.value,
        "payment_status": subscription.payment_status.value,
        "start_date": subscription.start_date,
        "end_date": subscription.end_date,
        "browse_count_used": subscription.browse_count_used,
        "listing_count_used": subscription.listing_count_used,
        "last_usage_reset_at": subscription.last_usage_reset_at,
        "assigned_by": subscription.assigned_by,
        "notes": subscription.notes,
        "suspension_reason": subscription.suspension_reason,
        "is_current": subscription.is_current,
        "superseded_at": subscription.superseded_at,
        "created_at": subscription.created_at,
        "updated_at": subscription.updated_at,
    }


class PostgresSubscriptionRepository:
    """Concrete repository persisting subscription models in PostgreSQL.

    Implements the plan, subscription and request repository protocols. Row
    level ``FOR UPDATE`` locks serialise writes to a single subscription.
    """

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    @contextmanager
    def _cursor(self) -> Iterable[PgCursor]:
        with managed_connection(self._conn) as (connection, managed):
            cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            try:
                yield cursor
                if managed:
                    connection.commit()
            except Exception:
                if managed:
                    connection.rollback()
                raise
            finally:
                cursor.close()

    def ensure_schema(self) -> None:
        """Create tables and indexes if they do not exist yet."""

        with self._cursor() as cursor:
            cursor.execute(SCHEMA_PATH.read_text(encoding="utf-8"))

    # Plans

    def list_plans(
        self,
        *,
        plan_type: Optional[PlanType] = None,
        active_only: bool = False,
    ) -> Sequence[SubscriptionPlan]:
        clauses: List[str] = []
        params: Dict[str, Any] = {}
        if plan_type is not None:
            clauses.append("plan_type = %(plan_type)s")
            params["plan_type"] = plan_type.value
        if active_only:
            clauses.append("is_active")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._cursor() as cursor:
            cursor.execute(
                f"SELECT * FROM subscription_plans {where} ORDER BY plan_type, price, name",
                params,
            )
            rows = cursor.fetchall()
        return [_row_to_plan(row) for row in rows]

    def get_plan(self, plan_id: str) -> Optional[SubscriptionPlan]:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM subscription_plans WHERE id = %s", (plan_id,))
            row = cursor.fetchone()
        return _row_to_plan(row) if row else None

    def get_plan_by_name(self, name: str) -> Optional[SubscriptionPlan]:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT * FROM subscription_plans WHERE name = %s",
                (name.strip().lower(),),
            )
            row = cursor.fetchone()
        return _row_to_plan(row) if row else None

    def insert_plan(self, plan: SubscriptionPlan) -> SubscriptionPlan:
        try:
            with self._cursor() as cursor:
                cursor.execute(
                    """
                    INSERT INTO subscription_plans (
                        id,
                        name,
                        display_name,
                        description,
                        plan_type,
                        price,
                        currency,
                        duration_days,
                        features,
                        is_active,
                        created_at,
                        updated_at
                    )
                    VALUES (
                        %(id)s,
                        %(name)s,
                        %(display_name)s,
                        %(description)s,
                        %(plan_type)s,
                        %(price)s,
                        %(currency)s,
                        %(duration_days)s,
                        %(features)s,
                        %(is_active)s,
                        %(created_at)s,
                        %(updated_at)s
                    )
                    RETURNING *
                    """,
                    self._plan_params(plan),
                )
                row = cursor.fetchone()
        except psycopg2.errors.UniqueViolation as exc:
            raise SubscriptionConflictError(f"A plan named {plan.name!r} already exists") from exc
        return _row_to_plan(row)

    def update_plan(self, plan_id: str, mutate: PlanMutator) -> SubscriptionPlan:
        try:
            with self._cursor() as cursor:
                cursor.execute("SELECT * FROM subscription_plans WHERE id = %s FOR UPDATE", (plan_id,))
                row = cursor.fetchone()
                if row is None:
                    raise SubscriptionNotFoundError(f"Plan {plan_id} not found")
                updated = mutate(_row_to_plan(row))
                cursor.execute(
                    """
                    UPDATE subscription_plans
                    SET name = %(name)s,
                        display_name = %(display_name)s,
                        description = %(description)s,
                        plan_type = %(plan_type)s,
                        price = %(price)s,
                        currency = %(currency)s,
                        duration_days = %(duration_days)s,
                        features = %(features)s,
                        is_active = %(is_active)s,
                        updated_at = %(updated_at)s
                    WHERE id = %(id)s
                    RETURNING *
                    """,
                    self._plan_params(updated),
                )
                stored = cursor.fetchone()
        except psycopg2.errors.UniqueViolation as exc:
            raise SubscriptionConflictError("A plan with this name already exists") from exc
        return _row_to_plan(stored)

    @staticmethod
    def _plan_params(plan: SubscriptionPlan) -> Dict[str, Any]:
        return {
            "id": plan.id,
            "name": plan.name,
            "display_name": plan.display_name,
            "description": plan.description,
            "plan_type": plan.plan_type.value,
            "price": plan.price,
            "currency": plan.currency,
            "duration_days": plan.duration_days,
            "features": psycopg2.extras.Json(plan.features.model_dump(mode="json")),
            "is_active": plan.is_active,
            "created_at": plan.created_at,
            "updated_at": plan.updated_at,
        }

    # Subscriptions

    def get_subscription(self, subscription_id: str) -> Optional[UserSubscription]:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM user_subscriptions WHERE id = %s", (subscription_id,))
            row = cursor.fetchone()
        return _row_to_subscription(row) if row else None

    def get_current_subscription(self, account_id: str) -> Optional[UserSubscription]:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT * FROM user_subscriptions WHERE account_id = %s AND is_current",
                (account_id,),
            )
            row = cursor.fetchone()
        return _row_to_subscription(row) if row else None

    def list_subscriptions(self, filters: SubscriptionFilters, *, now: datetime) -> SubscriptionPage:
        clauses = ["is_current"]
        params: Dict[str, Any] = {"limit": filters.page_size, "offset": filters.offset}
        if filters.status is not None:
            clauses.append("status = %(status)s")
            params["status"] = filters.status.value
        if filters.plan_id:
            clauses.append("plan_id = %(plan_id)s")
            params["plan_id"] = filters.plan_id
        if filters.account_id:
            clauses.append("account_id = %(account_id)s")
            params["account_id"] = filters.account_id
        if filters.expiring_within_days is not None:
            # Matches 0 <= ceil((end_date - now) / 1 day) <= N.
            clauses.append("end_date > %(expiring_from)s AND end_date <= %(expiring_until)s")
            params["expiring_from"] = now - timedelta(days=1)
            params["expiring_until"] = now + timedelta(days=filters.expiring_within_days)
        where = " AND ".join(clauses)

        with self._cursor() as cursor:
            cursor.execute(f"SELECT COUNT(*) AS total FROM user_subscriptions WHERE {where}", params)
            total = int(cursor.fetchone()["total"])
            cursor.execute(
                f"""
                SELECT * FROM user_subscriptions
                WHERE {where}
                ORDER BY end_date ASC, id ASC
                LIMIT %(limit)s OFFSET %(offset)s
                """,
                params,
            )
            rows = cursor.fetchall()
        return SubscriptionPage(
            items=[_row_to_subscription(row) for row in rows],
            total=total,
            page=filters.page,
            page_size=filters.page_size,
        )

    def list_current_subscriptions(self) -> Sequence[UserSubscription]:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM user_subscriptions WHERE is_current ORDER BY created_at")
            rows = cursor.fetchall()
        return [_row_to_subscription(row) for row in rows]

    def create_subscription(self, subscription: UserSubscription) -> UserSubscription:
        try:
            with self._cursor() as cursor:
                cursor.execute(
                    "SELECT id FROM user_subscriptions WHERE account_id = %s AND is_current FOR UPDATE",
                    (subscription.account_id,),
                )
                self._supersede_current(cursor, subscription.account_id, subscription.created_at)
                return self._insert_subscription(cursor, subscription)
        except psycopg2.errors.UniqueViolation as exc:
            raise SubscriptionConflictError(
                "Account already has a current subscription",
                detail={"account_id": subscription.account_id},
            ) from exc

    def update_subscription(self, subscription_id: str, mutate: SubscriptionMutator) -> UserSubscription:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM user_subscriptions WHERE id = %s FOR UPDATE", (subscription_id,))
            row = cursor.fetchone()
            if row is None:
                raise SubscriptionNotFoundError(f"Subscription {subscription_id} not found")
            updated = mutate(_row_to_subscription(row))
            return self._update_subscription_row(cursor, updated)

    def increment_usage(
        self,
        subscription_id: str,
        counter: UsageCounter,
        *,
        amount: int,
        limit: int,
    ) -> Optional[UserSubscription]:
        column = _COUNTER_COLUMNS[counter]
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                UPDATE user_subscriptions
                SET {column} = {column} + %(amount)s,
                    updated_at = NOW()
                WHERE id = %(id)s
                  AND is_current
                  AND status = 'active'
                  AND payment_status <> 'failed'
                  AND (%(limit)s = -1 OR {column} + %(amount)s <= %(limit)s)
                RETURNING *
                """,
                {"id": subscription_id, "amount": amount, "limit": limit},
            )
            row = cursor.fetchone()
        return _row_to_subscription(row) if row else None

    def release_usage(
        self,
        subscription_id: str,
        counter: UsageCounter,
        *,
        amount: int,
    ) -> Optional[UserSubscription]:
        column = _COUNTER_COLUMNS[counter]
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                UPDATE user_subscriptions
                SET {column} = GREATEST({column} - %(amount)s, 0),
                    updated_at = NOW()
                WHERE id = %(id)s
                RETURNING *
                """,
                {"id": subscription_id, "amount": amount},
            )
            row = cursor.fetchone()
        return _row_to_subscription(row) if row else None

    def _supersede_current(self, cursor: PgCursor, account_id: str, moment: datetime) -> None:
        cursor.execute(
            """
            UPDATE user_subscriptions
            SET is_current = FALSE,
                superseded_at = %(moment)s,
                updated_at = %(moment)s
            WHERE account_id = %(account_id)s AND is_current
            """,
            {"account_id": account_id, "moment": moment},
        )

    def _insert_subscription(self, cursor: PgCursor, subscription: UserSubscription) -> UserSubscription:
        columns = ", ".join(_SUBSCRIPTION_COLUMNS)
        values = ", ".join(f"%({column})s" for column in _SUBSCRIPTION_COLUMNS)
        cursor.execute(
            f"INSERT INTO user_subscriptions ({columns}) VALUES ({values}) RETURNING *",
            _subscription_params(subscription),
        )
        return _row_to_subscription(cursor.fetchone())

    def _update_subscription_row(self, cursor: PgCursor, subscription: UserSubscription) -> UserSubscription:
        assignments = ", ".join(
            f"{column} = %({column})s" for column in _SUBSCRIPTION_COLUMNS if column not in {"id", "created_at"}
        )
        cursor.execute(
            f"UPDATE user_subscriptions SET {assignments} WHERE id = %(id)s RETURNING *",
            _subscription_params(subscription),
        )
        return _row_to_subscription(cursor.fetchone())

    # Requests

    def create_request(self, request: SubscriptionRequest) -> SubscriptionRequest:
        try:
            with self._cursor() as cursor:
                cursor.execute(
                    """
                    INSERT INTO subscription_requests (
                        id,
                        account_id,
                        requested_plan_id,
                        requested_plan_name,
                        current_plan_id,
                        request_type,
                        status,
                        user_notes,
                        admin_notes,
                        resolved_by,
                        created_at,
                        resolved_at
                    )
                    VALUES (
                        %(id)s,
                        %(account_id)s,
                        %(requested_plan_id)s,
                        %(requested_plan_name)s,
                        %(current_plan_id)s,
                        %(request_type)s,
                        %(status)s,
                        %(user_notes)s,
                        %(admin_notes)s,
                        %(resolved_by)s,
                        %(created_at)s,
                        %(resolved_at)s
                    )
                    RETURNING *
                    """,
                    self._request_params(request),
                )
                row = cursor.fetchone()
        except psycopg2.errors.UniqueViolation as exc:
            raise SubscriptionConflictError(
                "A pending request for this plan already exists",
                detail={"plan_id": request.requested_plan_id},
            ) from exc
        return _row_to_request(row)

    def get_request(self, request_id: str) -> Optional[SubscriptionRequest]:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM subscription_requests WHERE id = %s", (request_id,))
            row = cursor.fetchone()
        return _row_to_request(row) if row else None

    def list_requests(
        self,
        *,
        account_id: Optional[str] = None,
        status: Optional[RequestStatus] = None,
    ) -> Sequence[SubscriptionRequest]:
        clauses: List[str] = []
        params: Dict[str, Any] = {}
        if account_id:
            clauses.append("account_id = %(account_id)s")
            params["account_id"] = account_id
        if status is not None:
            clauses.append("status = %(status)s")
            params["status"] = status.value
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._cursor() as cursor:
            cursor.execute(
                f"SELECT * FROM subscription_requests {where} ORDER BY created_at DESC",
                params,
            )
            rows = cursor.fetchall()
        return [_row_to_request(row) for row in rows]

    def has_pending_request(self, account_id: str, plan_id: str) -> bool:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT 1 FROM subscription_requests
                WHERE account_id = %s AND requested_plan_id = %s AND status = 'pending'
                LIMIT 1
                """,
                (account_id, plan_id),
            )
            return cursor.fetchone() is not None

    def resolve_request(
        self,
        request_id: str,
        resolve: RequestResolver,
    ) -> Tuple[SubscriptionRequest, Optional[UserSubscription]]:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM subscription_requests WHERE id = %s FOR UPDATE", (request_id,))
            row = cursor.fetchone()
            if row is None:
                raise SubscriptionNotFoundError(f"Request {request_id} not found")
            request = _row_to_request(row)

            cursor.execute(
                "SELECT * FROM user_subscriptions WHERE account_id = %s AND is_current FOR UPDATE",
                (request.account_id,),
            )
            subscription_row = cursor.fetchone()
            current = _row_to_subscription(subscription_row) if subscription_row else None

            resolved, subscription = resolve(request, current)

            cursor.execute(
                """
                UPDATE subscription_requests
                SET status = %(status)s,
                    admin_notes = %(admin_notes)s,
                    resolved_by = %(resolved_by)s,
                    resolved_at = %(resolved_at)s
                WHERE id = %(id)s
                RETURNING *
                """,
                self._request_params(resolved),
            )
            stored_request = _row_to_request(cursor.fetchone())

            if subscription is None or subscription == current:
                return stored_request, current
            if current is not None and subscription.id == current.id:
                return stored_request, self._update_subscription_row(cursor, subscription)
            if current is not None:
                self._supersede_current(cursor, request.account_id, subscription.created_at)
            return stored_request, self._insert_subscription(cursor, subscription)

    @staticmethod
    def _request_params(request: SubscriptionRequest) -> Dict[str, Any]:
        return {
            "id": request.id,
            "account_id": request.account_id,
            "requested_plan_id": request.requested_plan_id,
            "requested_plan_name": request.requested_plan_name,
            "current_plan_id": request.current_plan_id,
            "request_type": request.request_type.value,
            "status": request.status.value,
            "user_notes": request.user_notes,
            "admin_notes": request.admin_notes,
            "resolved_by": request.resolved_by,
            "created_at": request.created_at,
            "resolved_at": request.resolved_at,
        }


__all__ = ["PostgresSubscriptionRepository", "SCHEMA_PATH", "managed_connection"]
