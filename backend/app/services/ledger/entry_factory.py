"""Entry factory for contract accruals.

Knows which chart accounts each kind of contract obligation books to:

Monthly rent:
    DR RECEIVABLE_RENT   tenant    full rent
    CR PAYABLE_LANDLORD  landlord  rent less commission
    CR INCOME_FEES       agency    commission

Security deposit, collection:
    DR RECEIVABLE_RENT   tenant
    CR TRUST_CASH
Security deposit, return:
    DR TRUST_CASH
    CR DEPOSIT_LIABILITY landlord

Contract fees, one installment:
    DR PAYABLE_LANDLORD (landlord) or RECEIVABLE_RENT (tenant)
    CR INCOME_INITIAL_FEES agency
"""

import enum
import logging
from datetime import date
from decimal import Decimal

from dateutil.relativedelta import relativedelta
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.ledger import LedgerEntry
from app.services.ledger import chart
from app.services.ledger.entries import create_entry
from app.services.ledger.entry_builder import EntryBuilder, EntryDraft
from app.services.ledger.errors import LedgerValidationError
from app.services.ledger.store import to_money

logger = logging.getLogger(__name__)

DUE_DAYS = 10


class DepositMovement(str, enum.Enum):
    COLLECTION = "collection"
    RETURN = "return"


class FeePayer(str, enum.Enum):
    LANDLORD = "landlord"
    TENANT = "tenant"


class EntryFactory:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.builder = EntryBuilder()

    async def _accounts(self, *codes: str) -> dict[str, int]:
        return await chart.resolve_account_ids(self.db, list(codes))

    async def monthly_rent(
        self,
        *,
        property_address: str,
        period: date,
        period_number: int,
        total_periods: int,
        amount: Decimal,
        commission_rate: Decimal,
        tenant_id: int,
        landlord_id: int,
        agency_id: int | None = None,
        tenant_name: str | None = None,
        landlord_name: str | None = None,
        contract_id: int | None = None,
        adjustable: bool = False,
        adjustment_rule: str | None = None,
    ) -> EntryDraft:
        if not Decimal("0") <= Decimal(str(commission_rate)) < Decimal("1"):
            raise LedgerValidationError(
                f"Commission rate must be in [0, 1), got {commission_rate}",
                code="INVALID_AMOUNT",
                commission_rate=commission_rate,
            )
        accounts = await self._accounts(
            chart.RECEIVABLE_RENT, chart.PAYABLE_LANDLORD, chart.INCOME_FEES
        )
        amount = to_money(amount)
        commission = to_money(amount * Decimal(str(commission_rate)))
        net_to_landlord = amount - commission

        label = f"Rent {period:%m/%Y} - period {period_number} of {total_periods} - {property_address}"
        return (
            self.builder.reset()
            .set_category("Rent")
            .set_description(label)
            .set_dates(period, period + relativedelta(days=DUE_DAYS))
            .set_contract(contract_id)
            .set_awaiting_adjustment(adjustable, adjustment_rule)
            .add_debit(accounts[chart.RECEIVABLE_RENT], amount, tenant_id, label)
            .add_credit(
                accounts[chart.PAYABLE_LANDLORD], net_to_landlord, landlord_id,
                f"Landlord credit, {label}",
            )
            .add_credit(
                accounts[chart.INCOME_FEES], commission, agency_id,
                f"Management fee, {label}",
            )
            .add_metadata("property_address", property_address)
            .add_metadata("period", f"{period:%m/%Y}")
            .add_metadata("period_number", period_number)
            .add_metadata("total_periods", total_periods)
            .conditionally(tenant_name is not None, lambda b: b.add_metadata("tenant_name", tenant_name))
            .conditionally(landlord_name is not None, lambda b: b.add_metadata("landlord_name", landlord_name))
            .build()
        )

    async def security_deposit(
        self,
        *,
        property_address: str,
        amount: Decimal,
        on: date,
        movement: DepositMovement,
        tenant_id: int | None = None,
        landlord_id: int | None = None,
        contract_id: int | None = None,
    ) -> EntryDraft:
        accounts = await self._accounts(
            chart.RECEIVABLE_RENT, chart.TRUST_CASH, chart.DEPOSIT_LIABILITY
        )
        b = self.builder.reset().set_dates(on, on).set_contract(contract_id)
        if movement == DepositMovement.COLLECTION:
            b = (
                b.set_category("Security Deposit - Collection")
                .set_description(f"Security deposit due from tenant - {property_address}")
                .add_debit(
                    accounts[chart.RECEIVABLE_RENT], amount, tenant_id,
                    f"Security deposit receivable - {property_address}",
                )
                .add_credit(
                    accounts[chart.TRUST_CASH], amount, None,
                    f"Security deposit into trust account - {property_address}",
                )
            )
        else:
            b = (
                b.set_category("Security Deposit - Return")
                .set_description(f"Security deposit returned to landlord - {property_address}")
                .add_debit(
                    accounts[chart.TRUST_CASH], amount, None,
                    f"Security deposit out of trust account - {property_address}",
                )
                .add_credit(
                    accounts[chart.DEPOSIT_LIABILITY], amount, landlord_id,
                    f"Security deposit owed to landlord - {property_address}",
                )
            )
        return b.add_metadata("property_address", property_address).build()

    async def contract_fee(
        self,
        *,
        property_address: str,
        total_contract_amount: Decimal,
        percentage: Decimal,
        installments: int,
        installment_number: int,
        start_date: date,
        payer: FeePayer,
        payer_id: int,
        agency_id: int | None = None,
        payer_name: str | None = None,
        contract_id: int | None = None,
    ) -> EntryDraft:
        """One installment of the agency's contract fee.

        The landlord's fee is discounted from what they are owed; the
        tenant's is charged to them.
        """
        if installments < 1 or not 1 <= installment_number <= installments:
            raise LedgerValidationError(
                f"Installment {installment_number} of {installments} is out of range",
                code="INVALID_LINE",
                installment_number=installment_number,
                installments=installments,
            )
        accounts = await self._accounts(
            chart.PAYABLE_LANDLORD, chart.RECEIVABLE_RENT, chart.INCOME_INITIAL_FEES
        )
        total_fee = to_money(
            Decimal(str(total_contract_amount)) * Decimal(str(percentage)) / Decimal("100")
        )
        per_installment = to_money(total_fee / installments)
        # Last installment absorbs the rounding so the installments sum to the fee
        if installment_number == installments:
            per_installment = total_fee - per_installment * (installments - 1)

        accrual = start_date + relativedelta(months=installment_number - 1)
        debit_code = (
            chart.PAYABLE_LANDLORD if payer == FeePayer.LANDLORD else chart.RECEIVABLE_RENT
        )
        label = f"{installment_number}/{installments}"
        return (
            self.builder.reset()
            .set_category(f"{payer.value.capitalize()} Fee")
            .set_description(f"{payer.value.capitalize()} fee - installment {label} - {property_address}")
            .set_dates(accrual, accrual + relativedelta(days=DUE_DAYS))
            .set_contract(contract_id)
            .add_debit(
                accounts[debit_code], per_installment, payer_id,
                f"{'Discount' if payer == FeePayer.LANDLORD else 'Charge'} of {payer.value} fee "
                f"- installment {installment_number} - {property_address}",
            )
            .add_credit(
                accounts[chart.INCOME_INITIAL_FEES], per_installment, agency_id,
                f"{payer.value.capitalize()} fee income - installment {installment_number} - {property_address}",
            )
            .add_metadata("property_address", property_address)
            .add_metadata("installment", label)
            .conditionally(payer_name is not None, lambda b: b.add_metadata(f"{payer.value}_name", payer_name))
            .build()
        )

    async def create(self, draft: EntryDraft, *, created_by: int | None = None) -> LedgerEntry:
        """Persist *draft* through the entry lifecycle service."""
        return await create_entry(self.db, created_by=created_by, **draft.as_kwargs())
