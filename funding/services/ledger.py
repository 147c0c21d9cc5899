"""
Ledger service: writes double entries, platform tips and refunds.
"""
from __future__ import annotations

import logging
from uuid import UUID, uuid4

from django.db import transaction as db_transaction

from funding.domain.settlement import SettlementStatus
from funding.domain.transaction import (
    Transaction,
    TransactionKind,
    TransactionType,
    build_double_entry,
    build_refund,
    net_amount,
    split_platform_tip,
)
from funding.infra.locks import transaction_group_lock
from funding.infra.repositories import (
    CollectiveRepository,
    TransactionRepository,
    TransactionSettlementRepository,
)

logger = logging.getLogger(__name__)


def _to_negative(value) -> int:
    return -abs(value or 0)


class LedgerService:
    """Service writing ledger entries."""

    def __init__(
        self,
        transaction_repo: TransactionRepository | None = None,
        collective_repo: CollectiveRepository | None = None,
        settlement_repo: TransactionSettlementRepository | None = None,
    ):
        self.transaction_repo = transaction_repo or TransactionRepository()
        self.collective_repo = collective_repo or CollectiveRepository()
        self.settlement_repo = settlement_repo or TransactionSettlementRepository(self.transaction_repo)

    @db_transaction.atomic
    def create_double_entry(self, payload: Transaction, transaction_group: UUID | None = None) -> Transaction:
        """
        Write ``payload`` and its mirror entry on the sending account.

        The DEBIT entry is written first. Returns the entry of the payload's
        collective.
        """
        from_collective = self.collective_repo.get_by_id(payload.from_collective_id)
        from_collective_host_id = from_collective.host_id if from_collective else None

        debit, credit = build_double_entry(payload, from_collective_host_id, transaction_group)
        debit = self.transaction_repo.create(debit)
        credit = self.transaction_repo.create(credit)

        logger.info(
            "double_entry_created",
            extra={
                "transaction_group": str(credit.transaction_group),
                "collective_id": str(payload.collective_id),
                "amount": payload.amount,
                "currency": payload.currency,
            },
        )
        return credit if payload.amount > 0 else debit

    @db_transaction.atomic
    def create_from_payload(self, payload: Transaction) -> Transaction:
        """
        Record a charge. Fees are stored as negative numbers whatever the sign
        the caller used; a fees-on-top tip goes to the platform account in the
        same transaction group.
        """
        payload.host_fee_in_host_currency = _to_negative(payload.host_fee_in_host_currency)
        payload.platform_fee_in_host_currency = _to_negative(payload.platform_fee_in_host_currency)
        payload.payment_processor_fee_in_host_currency = _to_negative(payload.payment_processor_fee_in_host_currency)
        if payload.amount_in_host_currency is None:
            payload.amount_in_host_currency = payload.amount
        payload.net_amount_in_collective_currency = net_amount(payload)

        platform_tip = payload.data.get("platformTip")
        if payload.is_fees_on_top and platform_tip:
            platform = self.collective_repo.get_platform()
            tip, contribution = split_platform_tip(payload, platform_tip, platform.id)
            transaction_group = uuid4()
            self.create_double_entry(tip, transaction_group=transaction_group)
            # Tips not collected by the platform itself are owed by the host
            if not payload.data.get("settled"):
                self.settlement_repo.create(transaction_group, TransactionKind.PLATFORM_TIP, SettlementStatus.OWED)
            return self.create_double_entry(contribution, transaction_group=transaction_group)

        return self.create_double_entry(payload)

    def has_platform_tip(self, transaction: Transaction) -> bool:
        return transaction.has_platform_tip()

    def get_platform_tip_transaction(self, transaction: Transaction) -> Transaction | None:
        if not transaction.has_platform_tip():
            return None
        return self.transaction_repo.get_platform_tip(transaction)

    @db_transaction.atomic
    def create_refund_transaction(
        self,
        transaction: Transaction,
        refunded_payment_processor_fee: int,
        data: dict | None = None,
        created_by_user_id: UUID | None = None,
    ) -> Transaction:
        """
        Reverse a charge.

        ``transaction`` may be either side of the charge. When the processor did
        not give its fee back (``refunded_payment_processor_fee == 0``) the host
        covers it so the contributor is refunded in full.
        """
        with transaction_group_lock(transaction.transaction_group):
            if transaction.type == TransactionType.CREDIT:
                credit_transaction = self.transaction_repo.get_by_id(transaction.id) or transaction
            else:
                credit_transaction = self.transaction_repo.get_other_entry(transaction)

            if credit_transaction is None:
                raise ValueError("Cannot find any CREDIT transaction to refund")
            if credit_transaction.refund_transaction_id:
                raise ValueError("This transaction has already been refunded")

            if transaction.is_fees_on_top:
                tip_transaction = self.transaction_repo.get_platform_tip(transaction)
                if tip_transaction is not None:
                    tip_refund = self.create_double_entry(
                        build_refund(tip_transaction, refunded_payment_processor_fee, data, created_by_user_id)
                    )
                    self.associate_transaction_refund_id(tip_transaction, tip_refund, data)

            refund = self.create_double_entry(
                build_refund(credit_transaction, refunded_payment_processor_fee, data, created_by_user_id)
            )
            result = self.associate_transaction_refund_id(transaction, refund, data)

        logger.info(
            "transaction_refunded",
            extra={
                "transaction_id": str(transaction.id),
                "transaction_group": str(refund.transaction_group),
                "amount": refund.amount,
            },
        )
        return result

    def associate_transaction_refund_id(
        self,
        transaction: Transaction,
        refund: Transaction,
        data: dict | None = None,
    ) -> Transaction:
        """
        Cross-link both entries of a charge with both entries of its refund.

        Each entry points to the refund entry of the same account: the charge
        CREDIT to the refund DEBIT and the charge DEBIT to the refund CREDIT.
        """
        originals = self.transaction_repo.get_by_group(transaction.transaction_group, kind=transaction.kind)
        refunds = self.transaction_repo.get_by_group(refund.transaction_group, kind=refund.kind)
        refund_by_type = {t.type: t for t in refunds}

        for original in originals:
            opposite_type = TransactionType.DEBIT if original.type == TransactionType.CREDIT else TransactionType.CREDIT
            refund_entry = refund_by_type.get(opposite_type)
            if refund_entry is None:
                continue
            # Processors change the charge data after a refund
            self.transaction_repo.link_refund(original.id, refund_entry.id, data=data)
            self.transaction_repo.link_refund(refund_entry.id, original.id)

        return self.transaction_repo.get_by_id(transaction.id)
