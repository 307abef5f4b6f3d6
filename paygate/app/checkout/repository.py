"""Persistence for checkout sessions and their confirmation state."""
from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple

import psycopg2.extras

from ..db import PostgresRepository
from ..providers.models import ConfirmationResult
from .models import CheckoutSession, PaymentState

_COLUMNS = """
    reference, provider, plan_key, billing_interval, amount, currency, usd_equivalent,
    email, user_id, country_code, payment_method, idempotency_key, redirect_url,
    inline_params, provider_session_id, state, confirmation_status, verified_amount,
    verified_currency, transaction_id, rejection_reason, created_at, updated_at, verified_at
"""


def _row_to_session(row: dict) -> CheckoutSession:
    return CheckoutSession.model_validate(dict(row))


class PostgresCheckoutSessionRepository(PostgresRepository):
    """``checkout_sessions`` is unique on both ``reference`` and ``idempotency_key``."""

    def insert_session(self, session: CheckoutSession) -> Tuple[CheckoutSession, bool]:
        """Insert ``session`` unless its idempotency key exists; return the stored row."""

        with self._cursor() as cursor:
            cursor.execute(
                f"""
                INSERT INTO checkout_sessions (
                    reference, provider, plan_key, billing_interval, amount, currency,
                    usd_equivalent, email, user_id, country_code, payment_method,
                    idempotency_key, redirect_url, inline_params, provider_session_id, state
                )
                VALUES (
                    %(reference)s, %(provider)s, %(plan_key)s, %(billing_interval)s, %(amount)s,
                    %(currency)s, %(usd_equivalent)s, %(email)s, %(user_id)s, %(country_code)s,
                    %(payment_method)s, %(idempotency_key)s, %(redirect_url)s, %(inline_params)s,
                    %(provider_session_id)s, %(state)s
                )
                ON CONFLICT DO NOTHING
                RETURNING {_COLUMNS}
                """,
                {
                    "reference": session.reference,
                    "provider": session.provider.value,
                    "plan_key": session.plan_key.value,
                    "billing_interval": session.billing_interval.value,
                    "amount": session.amount,
                    "currency": session.currency,
                    "usd_equivalent": session.usd_equivalent,
                    "email": session.email,
                    "user_id": session.user_id,
                    "country_code": session.country_code,
                    "payment_method": session.payment_method.value if session.payment_method else None,
                    "idempotency_key": session.idempotency_key,
                    "redirect_url": session.redirect_url,
                    "inline_params": psycopg2.extras.Json(session.inline_params)
                    if session.inline_params is not None
                    else None,
                    "provider_session_id": session.provider_session_id,
                    "state": session.state.value,
                },
            )
            row = cursor.fetchone()
            if row:
                return _row_to_session(row), True

            cursor.execute(
                f"""
                SELECT {_COLUMNS}
                FROM checkout_sessions
                WHERE idempotency_key = %s OR reference = %s
                LIMIT 1
                """,
                (session.idempotency_key, session.reference),
            )
            existing = cursor.fetchone()
            if not existing:
                raise RuntimeError("Failed to persist checkout session")
            return _row_to_session(existing), False

    def get_by_idempotency_key(self, idempotency_key: str) -> Optional[CheckoutSession]:
        with self._cursor() as cursor:
            cursor.execute(
                f"SELECT {_COLUMNS} FROM checkout_sessions WHERE idempotency_key = %s LIMIT 1",
                (idempotency_key,),
            )
            row = cursor.fetchone()
            return _row_to_session(row) if row else None

    def get_by_reference(self, reference: str) -> Optional[CheckoutSession]:
        with self._cursor() as cursor:
            cursor.execute(
                f"SELECT {_COLUMNS} FROM checkout_sessions WHERE reference = %s LIMIT 1",
                (reference,),
            )
            row = cursor.fetchone()
            return _row_to_session(row) if row else None

    def claim_for_verification(
        self, reference: str, *, stale_before: datetime
    ) -> Optional[CheckoutSession]:
        """Move ``initiated`` (or an abandoned ``verifying``) to ``verifying``."""

        with self._cursor() as cursor:
            cursor.execute(
                f"""
                UPDATE checkout_sessions
                SET state = 'verifying',
                    updated_at = NOW()
                WHERE reference = %s
                  AND (state = 'initiated' OR (state = 'verifying' AND updated_at < %s))
                RETURNING {_COLUMNS}
                """,
                (reference, stale_before),
            )
            row = cursor.fetchone()
            return _row_to_session(row) if row else None

    def release_claim(self, reference: str) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE checkout_sessions
                SET state = 'initiated',
                    updated_at = NOW()
                WHERE reference = %s AND state = 'verifying'
                """,
                (reference,),
            )

    def finish_verification(
        self,
        reference: str,
        *,
        state: PaymentState,
        result: ConfirmationResult,
        rejection_reason: Optional[str] = None,
    ) -> Optional[CheckoutSession]:
        """Record the terminal state. Only a ``verifying`` row can be finished."""

        with self._cursor() as cursor:
            cursor.execute(
                f"""
                UPDATE checkout_sessions
                SET state = %(state)s,
                    confirmation_status = %(status)s,
                    verified_amount = %(verified_amount)s,
                    verified_currency = %(verified_currency)s,
                    transaction_id = %(transaction_id)s,
                    rejection_reason = %(rejection_reason)s,
                    verified_at = %(verified_at)s,
                    updated_at = NOW()
                WHERE reference = %(reference)s AND state = 'verifying'
                RETURNING {_COLUMNS}
                """,
                {
                    "reference": reference,
                    "state": state.value,
                    "status": result.status.value,
                    "verified_amount": result.verified_amount,
                    "verified_currency": result.verified_currency,
                    "transaction_id": result.transaction_id,
                    "rejection_reason": rejection_reason,
                    "verified_at": result.verified_at,
                },
            )
            row = cursor.fetchone()
            return _row_to_session(row) if row else None


class InMemoryCheckoutSessionRepository:
    """Thread-safe repository used for local development and tests."""

    def __init__(self) -> None:
        self.sessions: Dict[str, CheckoutSession] = {}
        self._by_key: Dict[str, str] = {}
        self._lock = threading.Lock()

    def insert_session(self, session: CheckoutSession) -> Tuple[CheckoutSession, bool]:
        with self._lock:
            existing_reference = self._by_key.get(session.idempotency_key)
            if existing_reference is not None:
                return self.sessions[existing_reference], False
            if session.reference in self.sessions:
                return self.sessions[session.reference], False
            self.sessions[session.reference] = session
            self._by_key[session.idempotency_key] = session.reference
            return session, True

    def get_by_idempotency_key(self, idempotency_key: str) -> Optional[CheckoutSession]:
        with self._lock:
            reference = self._by_key.get(idempotency_key)
            return self.sessions.get(reference) if reference else None

    def get_by_reference(self, reference: str) -> Optional[CheckoutSession]:
        with self._lock:
            return self.sessions.get(reference)

    def claim_for_verification(
        self, reference: str, *, stale_before: datetime
    ) -> Optional[CheckoutSession]:
        with self._lock:
            session = self.sessions.get(reference)
            if session is None:
                return None
            stale = session.state is PaymentState.VERIFYING and session.updated_at < stale_before
            if session.state is not PaymentState.INITIATED and not stale:
                return None
            claimed = session.model_copy(
                update={"state": PaymentState.VERIFYING, "updated_at": datetime.now(timezone.utc)}
            )
            self.sessions[reference] = claimed
            return claimed

    def release_claim(self, reference: str) -> None:
        with self._lock:
            session = self.sessions.get(reference)
            if session is not None and session.state is PaymentState.VERIFYING:
                self.sessions[reference] = session.model_copy(
                    update={"state": PaymentState.INITIATED, "updated_at": datetime.now(timezone.utc)}
                )

    def finish_verification(
        self,
        reference: str,
        *,
        state: PaymentState,
        result: ConfirmationResult,
        rejection_reason: Optional[str] = None,
    ) -> Optional[CheckoutSession]:
        with self._lock:
            session = self.sessions.get(reference)
            if session is None or session.state is not PaymentState.VERIFYING:
                return None
            finished = session.model_copy(
                update={
                    "state": state,
                    "confirmation_status": result.status,
                    "verified_amount": result.verified_amount,
                    "verified_currency": result.verified_currency,
                    "transaction_id": result.transaction_id,
                    "rejection_reason": rejection_reason,
                    "verified_at": result.verified_at,
                    "updated_at": datetime.now(timezone.utc),
                }
            )
            self.sessions[reference] = finished
            return finished


__all__ = ["InMemoryCheckoutSessionRepository", "PostgresCheckoutSessionRepository"]
