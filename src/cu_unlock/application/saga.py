"""UnlockSaga: spend credits to unlock an athlete's contacts.

States:
    START -> IDEMPOTENCY_CHECKED -> PRICED -> DEBITED -> GRANT_PERSISTED -> NOTIFIED
    PRICED | DEBITED -> ABORTED on failure

Steps run strictly in order for one (operator, athlete) pair, serialised by a
pair lock. The debit is committed on its own; if the grant write then fails,
compensation deletes the debit's transaction row and gives the credits back.
A replayed debit (same `tx_ref` inside the replay window) is honoured only
while an active grant backs it; otherwise the unlock is charged again.
Compensation failures are logged and never replace the original error.

Saga state lives only in this call. A crash between debit and grant write
leaves a settled DEBIT_CONTACT_UNLOCK row with no grant; those are found by
out-of-band reconciliation on `tx_ref`.
"""

import logging
from collections.abc import Callable
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from src.cu_common.credits import ZERO
from src.cu_common.database import bounded
from src.cu_common.datetime_utils import add_days, utc_now
from src.cu_common.enums import UNLOCK_DEBIT_KINDS
from src.cu_common.errors import (
    CompensationFailure,
    InsufficientCreditsError,
    WalletNotFoundError,
)
from src.cu_common.locks import PairLockRegistry, get_pair_locks
from src.cu_notify import templates
from src.cu_notify.dispatcher import NotificationDispatcher, get_dispatcher
from src.cu_notify.identity import IdentityResolver
from src.cu_notify.templates import EmailMessage
from src.cu_pricing.application.resolver import PricingResolver
from src.cu_pricing.domain.models import UnlockPrice
from src.cu_unlock.domain.models import (
    UnlockGrant,
    UnlockOutcome,
    UnlockState,
    unlock_tx_ref,
)
from src.cu_unlock.domain.repository import UnlockGrantStoreProtocol
from src.cu_unlock.infrastructure.grant_store import UnlockGrantStore
from src.cu_wallet.domain.models import LedgerMutation
from src.cu_wallet.domain.repository import WalletLedgerProtocol
from src.cu_wallet.infrastructure.ledger import WalletLedger

logger = logging.getLogger(__name__)

NotificationScheduler = Callable[[list[EmailMessage]], None]


class UnlockSaga:
    def __init__(
        self,
        ledger: WalletLedgerProtocol | None = None,
        grants: UnlockGrantStoreProtocol | None = None,
        pricing: PricingResolver | None = None,
        identities: IdentityResolver | None = None,
        dispatcher: NotificationDispatcher | None = None,
        locks: PairLockRegistry | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self._ledger: WalletLedgerProtocol = ledger or WalletLedger()
        self._grants: UnlockGrantStoreProtocol = grants or UnlockGrantStore()
        self._pricing = pricing or PricingResolver()
        self._identities = identities or IdentityResolver()
        self._dispatcher = dispatcher or get_dispatcher()
        self._locks = locks or get_pair_locks()
        self._timeout = timeout_seconds

    def _advance(
        self, current: UnlockState, new: UnlockState, operator_id: str, athlete_id: str
    ) -> UnlockState:
        logger.debug(
            "Unlock saga op=%s athlete=%s: %s -> %s",
            operator_id,
            athlete_id,
            current.value,
            new.value,
        )
        return new

    async def unlock(
        self,
        db: AsyncSession,
        operator_id: str,
        athlete_id: str,
        schedule: NotificationScheduler | None = None,
    ) -> UnlockOutcome:
        """Run the saga. `schedule` receives the notifications to send later;
        without it they are sent before returning (failures only logged).
        """
        async with self._locks.hold(operator_id, athlete_id):
            outcome = await self._run(db, operator_id, athlete_id)

        if outcome.already_unlocked:
            return outcome

        messages = await self._build_notifications(db, outcome)
        if schedule is not None:
            schedule(messages)
        else:
            await self._dispatcher.dispatch_all(messages)
        outcome.state = self._advance(
            outcome.state, UnlockState.NOTIFIED, operator_id, athlete_id
        )
        return outcome

    async def _run(self, db: AsyncSession, operator_id: str, athlete_id: str) -> UnlockOutcome:
        state = UnlockState.START
        now = utc_now()

        # 1. Idempotency
        existing = await bounded(
            self._grants.find_active(db, operator_id, athlete_id, now),
            "Active unlock lookup",
            self._timeout,
        )
        state = self._advance(state, UnlockState.IDEMPOTENCY_CHECKED, operator_id, athlete_id)
        if existing is not None:
            logger.info("Unlock idempotency hit: op=%s athlete=%s", operator_id, athlete_id)
            return await self._already_unlocked(db, existing, state)

        # 2. Price
        price = await bounded(
            self._pricing.resolve(db, now), "Unlock pricing lookup", self._timeout
        )
        state = self._advance(state, UnlockState.PRICED, operator_id, athlete_id)

        # 3. Debit (committed on its own)
        mutation = await self._debit(db, operator_id, athlete_id, price, state, allow_replay=True)
        if mutation.replayed:
            # A replay counts only while its grant is still active.
            existing = await bounded(
                self._grants.find_active(db, operator_id, athlete_id),
                "Active unlock lookup",
                self._timeout,
            )
            if existing is not None:
                logger.info(
                    "Unlock debit replay matches an active grant: op=%s athlete=%s",
                    operator_id,
                    athlete_id,
                )
                return await self._already_unlocked(db, existing, state)
            logger.warning(
                "Stale unlock debit replay ignored: op=%s athlete=%s tx_id=%s",
                operator_id,
                athlete_id,
                mutation.tx_id,
            )
            mutation = await self._debit(
                db, operator_id, athlete_id, price, state, allow_replay=False
            )
        state = self._advance(state, UnlockState.DEBITED, operator_id, athlete_id)

        # 4. Persist grant
        expires_at = add_days(now, price.validity_days)
        try:
            grant = await bounded(
                self._grants.upsert(db, operator_id, athlete_id, now, expires_at),
                "Unlock grant write",
                self._timeout,
            )
            await db.commit()
        except Exception as exc:
            self._advance(state, UnlockState.ABORTED, operator_id, athlete_id)
            # 5. Compensation
            await self._compensate(db, mutation, exc)
            raise
        state = self._advance(state, UnlockState.GRANT_PERSISTED, operator_id, athlete_id)

        if grant.preexisting:
            # Lost a race to a grant written outside this lock; refund our debit.
            await self._compensate(db, mutation, None)
            return await self._already_unlocked(db, grant, state)

        return UnlockOutcome(
            operator_id=operator_id,
            athlete_id=athlete_id,
            grant=grant,
            already_unlocked=False,
            balance=mutation.new_balance,
            credits_spent=price.credits_cost,
            state=state,
            tx_id=mutation.tx_id,
        )

    async def _debit(
        self,
        db: AsyncSession,
        operator_id: str,
        athlete_id: str,
        price: UnlockPrice,
        state: UnlockState,
        allow_replay: bool,
    ) -> LedgerMutation:
        try:
            mutation = await bounded(
                self._ledger.debit(
                    db,
                    operator_id,
                    price.credits_cost,
                    unlock_tx_ref(athlete_id),
                    UNLOCK_DEBIT_KINDS,
                    self._pricing.product_code,
                    allow_replay=allow_replay,
                ),
                "Wallet debit",
                self._timeout,
            )
            await db.commit()
        except WalletNotFoundError:
            await db.rollback()
            self._advance(state, UnlockState.ABORTED, operator_id, athlete_id)
            raise InsufficientCreditsError(price.credits_cost, ZERO) from None
        except Exception:
            await db.rollback()
            self._advance(state, UnlockState.ABORTED, operator_id, athlete_id)
            raise
        return mutation

    async def _already_unlocked(
        self, db: AsyncSession, grant: UnlockGrant, state: UnlockState
    ) -> UnlockOutcome:
        balance = await bounded(
            self._ledger.get_balance(db, grant.operator_id),
            "Wallet balance lookup",
            self._timeout,
        )
        return UnlockOutcome(
            operator_id=grant.operator_id,
            athlete_id=grant.athlete_id,
            grant=grant,
            already_unlocked=True,
            balance=balance,
            credits_spent=ZERO,
            state=state,
        )

    async def _compensate(
        self, db: AsyncSession, mutation: LedgerMutation, cause: BaseException | None
    ) -> None:
        """Best effort: delete the debit's row, then give the credits back.

        Each step commits separately so one failing does not undo the other.
        """
        operator_id = mutation.wallet.operator_id
        await self._safe_rollback(db)

        step = "delete_transaction"
        try:
            await bounded(
                self._ledger.delete_transaction(db, mutation.tx_id), "Compensation", self._timeout
            )
            await db.commit()
        except Exception as exc:
            self._log_compensation_failure(CompensationFailure(step, exc), mutation, cause)
            await self._safe_rollback(db)

        step = "restore_balance"
        try:
            await bounded(
                self._ledger.restore_balance(
                    db, operator_id, mutation.previous_balance, mutation.new_balance
                ),
                "Compensation",
                self._timeout,
            )
            await db.commit()
        except Exception as exc:
            self._log_compensation_failure(CompensationFailure(step, exc), mutation, cause)
            await self._safe_rollback(db)
            return

        logger.info(
            "Unlock debit compensated: op=%s tx_id=%s credits=%s",
            operator_id,
            mutation.tx_id,
            mutation.transaction.credits,
        )

    def _log_compensation_failure(
        self,
        failure: CompensationFailure,
        mutation: LedgerMutation,
        cause: BaseException | None,
    ) -> None:
        logger.error(
            "%s (op=%s tx_id=%s tx_ref=%s original_error=%s)",
            failure.message,
            mutation.wallet.operator_id,
            mutation.tx_id,
            mutation.transaction.tx_ref,
            cause,
            exc_info=failure.cause,
        )

    async def _safe_rollback(self, db: AsyncSession) -> None:
        try:
            await db.rollback()
        except Exception:
            logger.error("Rollback during unlock compensation failed", exc_info=True)

    async def _build_notifications(
        self, db: AsyncSession, outcome: UnlockOutcome
    ) -> list[EmailMessage]:
        """Both emails, or fewer when an address is unknown. Never raises."""
        try:
            athlete = await self._identities.athlete(db, outcome.athlete_id)
            operator = await self._identities.operator(db, outcome.operator_id)
        except Exception:
            logger.error(
                "Identity lookup for unlock notifications failed: op=%s athlete=%s",
                outcome.operator_id,
                outcome.athlete_id,
                exc_info=True,
            )
            return []

        expires_at: datetime | None = outcome.grant.expires_at
        messages: list[EmailMessage] = []
        if athlete.email:
            messages.append(
                templates.athlete_unlocked(
                    athlete.email, athlete.display_name, operator.display_name, expires_at
                )
            )
        if operator.email:
            messages.append(
                templates.operator_unlock_confirmed(
                    operator.email,
                    operator.display_name,
                    athlete.display_name,
                    outcome.credits_spent,
                    outcome.balance,
                    expires_at,
                )
            )
        return messages
