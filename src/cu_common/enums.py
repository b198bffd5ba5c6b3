"""Wallet transaction enums.

`kind` values differ between deployments (legacy naming), so writers try an
ordered tuple of acceptable kinds and keep the first one the store accepts.
The tuples below are the priority orders; the first entry is the current name.
"""

from enum import Enum


class TxKind(str, Enum):
    DEBIT_CONTACT_UNLOCK = "DEBIT_CONTACT_UNLOCK"
    CONTACT_UNLOCK = "CONTACT_UNLOCK"
    ADMIN_TOPUP = "ADMIN_TOPUP"
    TOPUP = "TOPUP"
    MANUAL_TOPUP = "MANUAL_TOPUP"
    CREDIT = "CREDIT"
    MANUAL_CREDIT = "MANUAL_CREDIT"
    ADMIN_ADJUST = "ADMIN_ADJUST"
    ADJUSTMENT = "ADJUSTMENT"
    MANUAL_ADJUST = "MANUAL_ADJUST"
    ADJUST = "ADJUST"
    DEBIT = "DEBIT"
    MANUAL_DEBIT = "MANUAL_DEBIT"


class TxStatus(str, Enum):
    SETTLED = "SETTLED"


class AdjustDirection(str, Enum):
    CREDIT = "credit"
    DEBIT = "debit"


UNLOCK_DEBIT_KINDS: tuple[str, ...] = (
    TxKind.DEBIT_CONTACT_UNLOCK.value,
    TxKind.CONTACT_UNLOCK.value,
    TxKind.DEBIT.value,
    TxKind.MANUAL_DEBIT.value,
)

ADMIN_CREDIT_KINDS: tuple[str, ...] = (
    TxKind.ADMIN_TOPUP.value,
    TxKind.TOPUP.value,
    TxKind.MANUAL_TOPUP.value,
    TxKind.CREDIT.value,
    TxKind.MANUAL_CREDIT.value,
)

ADMIN_DEBIT_KINDS: tuple[str, ...] = (
    TxKind.ADMIN_ADJUST.value,
    TxKind.ADJUSTMENT.value,
    TxKind.MANUAL_ADJUST.value,
    TxKind.ADJUST.value,
    TxKind.DEBIT.value,
    TxKind.MANUAL_DEBIT.value,
)
