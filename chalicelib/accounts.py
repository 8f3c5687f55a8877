"""
Internal ledger of the marketplace.

Every user owns one account. Balances move only through Ledger.transfer
(closed system: debits == credits) and Ledger.deposit (admin top-up).
All balance changes of one operation, the audit record of the operation and
any extra records supplied by the caller are written in a single DynamoDB
transaction. Each account update is conditioned on the account version_, a
concurrent writer cancels the whole transaction and the operation is retried
from a fresh read.
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
from uuid import uuid4

from botocore.exceptions import ClientError
from chalice import Response

from chalicelib.base_class_entity import EntityBase
from chalicelib.constants import keys_structure
from chalicelib.constants.constants import CENTS, get_ledger_max_retries, get_platform_account_id, \
    get_service_fee_rate
from chalicelib.constants.status_codes import http200
from chalicelib.utils import app as utils_app, auth as utils_auth, data as utils_data, db as utils_db, exceptions
from chalicelib.utils.data import to_money
from chalicelib.utils.logger import logger

Leg = Tuple[str, Decimal]


class Account(EntityBase):
    pk = keys_structure.accounts_pk
    sk = keys_structure.accounts_sk

    required_immutable_fields_validation = {
        'id_': lambda x: isinstance(x, str),
        'date_created': lambda x: isinstance(x, str)
    }

    required_mutable_fields_validation = {
        'balance': lambda x: isinstance(x, Decimal) and x >= 0,
        'version_': lambda x: isinstance(x, int),
        'date_updated': lambda x: isinstance(x, str)
    }

    def __init__(self, company_id, id_, **kwargs):
        EntityBase.__init__(self, company_id, id_)

        self.balance: Decimal = to_money(kwargs.get('balance', 0))
        self.version_: int = int(kwargs.get('version_', 0))
        self.date_created: str = kwargs.get('date_created') or datetime.now().isoformat(timespec='seconds')
        self.date_updated: str = kwargs.get('date_updated') or self.date_created
        self.record_type = 'account'

    @classmethod
    def find_by_id(cls, company_id, account_id) -> Optional['Account']:
        record = utils_db.find_db_item(
            keys_structure.accounts_pk.format(company_id=company_id),
            keys_structure.accounts_sk.format(user_id=account_id),
            consistent_read=True
        )
        return cls(**record) if record else None

    @classmethod
    def init_by_id(cls, company_id, account_id) -> 'Account':
        account = cls.find_by_id(company_id, account_id)
        if account is None:
            raise exceptions.AccountNotFound(f'Account {account_id} not found')
        return account

    def _get_pk_sk(self) -> Tuple[str, str]:
        return self.pk.format(company_id=self.company_id), self.sk.format(user_id=self.id_)

    def _to_dict(self):
        return {
            'id_': self.id_,
            'balance': self.balance,
            'version_': self.version_,
            'date_created': self.date_created,
            'date_updated': self.date_updated
        }


@dataclass(frozen=True)
class Settlement:
    subtotal: Decimal
    service_fee: Decimal
    total: Decimal


def calculate_settlement(subtotal: Decimal, fee_rate: Optional[Decimal] = None) -> Settlement:
    """
    total = subtotal * (1 + rate) rounded half-up to cents,
    the platform fee is whatever is left after the restaurant share,
    so the customer debit always equals the two credits.
    """
    fee_rate = get_service_fee_rate() if fee_rate is None else Decimal(fee_rate)
    subtotal = to_money(subtotal)
    total = (subtotal * (1 + fee_rate)).quantize(CENTS, rounding=ROUND_HALF_UP)
    return Settlement(subtotal=subtotal, service_fee=total - subtotal, total=total)


@dataclass
class TransferResult:
    transfer_id: str
    kind: str
    reference: Optional[str]
    balances: Dict[str, Decimal] = field(default_factory=dict)
    attempts: int = 1


class Ledger:
    def __init__(self, company_id, max_retries: Optional[int] = None):
        self.company_id = company_id
        self.max_retries = max_retries or get_ledger_max_retries()

    def get_balance(self, account_id) -> Decimal:
        return Account.init_by_id(self.company_id, account_id).balance

    def transfer(self, debits: Sequence[Leg], credits: Sequence[Leg], reference: Optional[str] = None,
                 kind: str = 'transfer', extra_items: Iterable[Dict] = ()) -> TransferResult:
        debits = self._normalize_legs(debits)
        credits = self._normalize_legs(credits)
        debit_sum = sum((amount for _, amount in debits), Decimal('0.00'))
        credit_sum = sum((amount for _, amount in credits), Decimal('0.00'))
        if debit_sum != credit_sum:
            error = exceptions.ImbalancedTransferError(
                f'Transfer is not balanced: debits={debit_sum} credits={credit_sum} {reference=}')
            logger.error(f'transfer ::: {error}')
            raise error

        net_changes: Dict[str, Decimal] = {}
        for account_id, amount in debits:
            net_changes[account_id] = net_changes.get(account_id, Decimal('0.00')) - amount
        for account_id, amount in credits:
            net_changes[account_id] = net_changes.get(account_id, Decimal('0.00')) + amount

        return self._apply(net_changes, debits, credits, reference, kind, list(extra_items))

    def deposit(self, account_id: str, amount, reference: Optional[str] = None) -> TransferResult:
        [(account_id, amount)] = self._normalize_legs([(account_id, amount)])
        if amount == 0:
            raise exceptions.ValidationException('Deposit amount must be positive')
        return self._apply({account_id: amount}, [], [(account_id, amount)], reference, 'deposit', [])

    def settle_order(self, customer_id: str, restaurant_account_id: str, settlement: Settlement,
                     reference: str, extra_items: Iterable[Dict] = ()) -> TransferResult:
        """ customer pays the total, restaurant gets the subtotal, platform gets the fee """
        return self.transfer(
            debits=[(customer_id, settlement.total)],
            credits=[(restaurant_account_id, settlement.subtotal),
                     (get_platform_account_id(), settlement.service_fee)],
            reference=reference,
            kind='order_settlement',
            extra_items=extra_items
        )

    @staticmethod
    def _normalize_legs(legs: Sequence[Leg]) -> List[Leg]:
        normalized = []
        for account_id, amount in legs:
            if isinstance(amount, bool) or not isinstance(amount, (int, float, Decimal)):
                raise exceptions.ValidationException(f'Amount {amount!r} for account {account_id} is not a number')
            amount = to_money(amount)
            if amount < 0:
                raise exceptions.ValidationException(f'Negative amount {amount} for account {account_id}')
            normalized.append((account_id, amount))
        return normalized

    def _apply(self, net_changes: Dict[str, Decimal], debits: List[Leg], credits: List[Leg],
               reference: Optional[str], kind: str, extra_items: List[Dict]) -> TransferResult:
        transfer_id = str(uuid4())
        account_ids = sorted(account_id for account_id, change in net_changes.items() if change != 0)

        for attempt in range(1, self.max_retries + 1):
            now = datetime.now().isoformat(timespec='seconds')
            transact_items = []
            balances = {}
            for account_id in account_ids:
                change = net_changes[account_id]
                account = Account.find_by_id(self.company_id, account_id)
                if account is None:
                    # an account that was never funded holds 0.00
                    if change < 0:
                        raise exceptions.InsufficientFundsError(account_id, -change, Decimal('0.00'))
                    account = Account(self.company_id, account_id, balance=change, version_=1)
                    transact_items.append(utils_db.put_transact_item(
                        account._build_db_record(), condition_expression='attribute_not_exists(partkey)'))
                    balances[account_id] = account.balance
                    continue

                new_balance = account.balance + change
                if change < 0 and new_balance < 0:
                    raise exceptions.InsufficientFundsError(account_id, -change, account.balance)
                if new_balance < 0:
                    error = exceptions.NegativeBalanceError(
                        f'Account {account_id} balance would become {new_balance} {reference=}')
                    logger.error(f'_apply ::: {error}')
                    raise error
                transact_items.append(utils_db.update_transact_item(
                    key=account._get_key(),
                    update_expression='SET balance = :balance, version_ = :next_version, date_updated = :date',
                    expr_attr_values={
                        ':balance': new_balance,
                        ':next_version': account.version_ + 1,
                        ':version': account.version_,
                        ':date': now
                    },
                    condition_expression='attribute_exists(partkey) AND version_ = :version'
                ))
                balances[account_id] = new_balance

            transact_items.append(utils_db.put_transact_item(
                self._audit_record(transfer_id, kind, reference, debits, credits, now),
                condition_expression='attribute_not_exists(partkey)'
            ))
            transact_items.extend(extra_items)

            try:
                utils_db.transact_write_items(transact_items)
            except ClientError as error:
                if not utils_db.is_transaction_canceled(error):
                    raise
                logger.warning(f'_apply ::: {transfer_id=} {kind=} {reference=} attempt {attempt} cancelled, '
                               f'reasons={error.response.get("CancellationReasons")}')
                continue

            logger.info(f'_apply ::: {transfer_id=} {kind=} {reference=} committed, {balances=}')
            return TransferResult(transfer_id=transfer_id, kind=kind, reference=reference,
                                  balances=balances, attempts=attempt)

        raise exceptions.NumberOfRetriesExceeded(
            f'Ledger {kind} {reference=} was not committed after {self.max_retries} attempts')

    def _audit_record(self, transfer_id, kind, reference, debits: List[Leg], credits: List[Leg], now) -> Dict:
        return {
            'partkey': keys_structure.transfers_pk.format(company_id=self.company_id),
            'sortkey': keys_structure.transfers_sk.format(transfer_id=transfer_id),
            'record_type': 'transfer',
            'company_id': self.company_id,
            'id_': transfer_id,
            'kind': kind,
            'reference': reference,
            'debits': [{'account_id': account_id, 'amount': amount} for account_id, amount in debits],
            'credits': [{'account_id': account_id, 'amount': amount} for account_id, amount in credits],
            'date_created': now
        }


@utils_app.log_start_finish
@utils_auth.authenticate
@utils_app.request_exception_handler
def endpoint_get_balance(request):
    auth_result = request.auth_result
    account = Account.find_by_id(auth_result['company_id'], auth_result['user_id'])
    balance = account.balance if account else Decimal('0.00')
    return Response(status_code=http200, body={'id': auth_result['user_id'], 'balance': balance})


@utils_app.log_start_finish
@utils_auth.authenticate
@utils_app.request_exception_handler
def endpoint_deposit(request, account_id):
    """
    admin operation
    """
    utils_auth.ensure_role(request, 'company_admin')
    request_body = utils_data.parse_raw_body(request)
    if 'amount' not in request_body:
        raise exceptions.ValidationException('amount must be provided')
    result = Ledger(request.auth_result['company_id']).deposit(
        account_id, request_body['amount'], reference=request_body.get('reference'))
    return Response(status_code=http200, body={'id': account_id, 'balance': result.balances[account_id],
                                               'transfer_id': result.transfer_id})
