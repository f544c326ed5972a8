"""
Payment split ledger and checkout session state.

The ledger tracks the partial payments of a mixed-payment sale against its
total. The checkout session bundles everything the terminal collects before
confirming a sale; it is serialized into the Flask session between requests.
"""
import re
import uuid
from decimal import Decimal
from typing import Any, Dict, List, Optional

from repairpos.exceptions import ValidationError, BusinessLogicError
from repairpos.services.pricing_service import ZERO, round2, to_decimal

PAYMENT_METHODS = ('cash', 'card', 'transfer', 'credit')

# Floating residue tolerated when checking that a mixed payment is complete
CONFIRM_TOLERANCE = Decimal('0.01')


def normalize_payment_method(value) -> str:
    """Normalize a payment method name; raises ValidationError when unknown."""
    method = str(value or '').strip().lower()
    if method not in PAYMENT_METHODS:
        raise ValidationError(f'Método de pago inválido: {value}')
    return method


def card_digits(value) -> str:
    """Digits of a card number or last-4 entry, ignoring spaces and dashes."""
    return re.sub(r'\D', '', str(value or ''))


class PaymentSplitLedger:
    """
    Partial payments recorded against a target total.

    Invariant: the sum of the entries never exceeds the total; an entry that
    would break it is rejected without touching the ledger.
    """

    def __init__(self, total=ZERO, entries: Optional[List[Dict[str, Any]]] = None):
        self.total = round2(max(to_decimal(total), ZERO))
        self.entries: List[Dict[str, Any]] = list(entries or [])

    def add_split(self, method: str, amount, reference: Optional[str] = None) -> str:
        """Append a payment entry and return its id."""
        method = normalize_payment_method(method)
        amount = to_decimal(amount, default=None)
        if amount is None or amount <= 0:
            raise ValidationError('El monto debe ser mayor a 0')
        amount = round2(amount)

        remaining = self.remaining()
        if amount > remaining:
            raise ValidationError(f'El monto ({amount}) excede el saldo pendiente ({remaining})',
                                  payload={'remaining': str(remaining)})

        entry = {'id': uuid.uuid4().hex, 'method': method, 'amount': amount}

        if method == 'card':
            digits = card_digits(reference)
            if len(digits) != 4:
                raise ValidationError('Ingrese los últimos 4 dígitos de la tarjeta')
            entry['card_last4'] = digits[-4:]
        elif method == 'transfer':
            reference = (reference or '').strip()
            if not reference:
                raise ValidationError('La transferencia requiere un número de referencia')
            entry['reference'] = reference

        self.entries.append(entry)
        return entry['id']

    def remove_split(self, split_id: str) -> None:
        """Remove an entry by id; unknown ids are ignored."""
        self.entries = [e for e in self.entries if e['id'] != split_id]

    def total_paid(self) -> Decimal:
        return sum((round2(e['amount']) for e in self.entries), ZERO)

    def remaining(self) -> Decimal:
        return round2(max(ZERO, self.total - self.total_paid()))

    def can_confirm(self) -> bool:
        return bool(self.entries) and self.remaining() <= CONFIRM_TOLERANCE

    def credit_amount(self) -> Decimal:
        """Portion of the ledger charged to the customer's credit account."""
        return sum((round2(e['amount']) for e in self.entries if e['method'] == 'credit'), ZERO)

    def set_total(self, total) -> None:
        """Retarget the ledger; entries above a lowered total are dropped newest first."""
        self.total = round2(max(to_decimal(total), ZERO))
        while self.entries and self.total_paid() > self.total:
            self.entries.pop()

    def clear(self) -> None:
        self.entries = []

    def to_list(self) -> List[Dict[str, Any]]:
        return [{k: (str(v) if isinstance(v, Decimal) else v) for k, v in e.items()} for e in self.entries]

    @classmethod
    def from_list(cls, total, entries) -> 'PaymentSplitLedger':
        ledger = cls(total)
        for e in entries or []:
            entry = dict(e)
            entry['amount'] = round2(entry.get('amount'))
            ledger.entries.append(entry)
        return ledger


class PaymentStatusState:
    """Finalization states of a checkout."""
    IDLE = 'idle'
    PROCESSING = 'processing'
    SUCCESS = 'success'
    FAILED = 'failed'


ALLOWED_TRANSITIONS = {
    PaymentStatusState.IDLE: {PaymentStatusState.PROCESSING},
    PaymentStatusState.PROCESSING: {PaymentStatusState.SUCCESS, PaymentStatusState.FAILED},
    PaymentStatusState.FAILED: {PaymentStatusState.PROCESSING, PaymentStatusState.IDLE},
    PaymentStatusState.SUCCESS: {PaymentStatusState.IDLE},
}


def _empty_progress() -> Dict[str, Any]:
    return {'sale_id': None, 'stock_applied': [], 'repairs_done': False, 'credit_done': False}


class CheckoutSession:
    """Everything a terminal collects for one sale, plus its finalization state."""

    def __init__(self):
        self.cart: List[Dict[str, Any]] = []
        self.discount_percent = Decimal('0')
        self.is_wholesale = False
        self.customer_id: Optional[int] = None
        # Repair link
        self.repair_ids: List[int] = []
        self.mark_delivered = True
        self.use_final_cost_from_sale = False
        # Payment inputs
        self.payment_method = 'cash'
        self.is_mixed_payment = False
        self.cash_received = ZERO
        self.card_number = ''
        self.transfer_reference = ''
        self.installment_count = 1
        self.ledger = PaymentSplitLedger()
        # Finalization
        self.payment_status = PaymentStatusState.IDLE
        self.payment_error: Optional[str] = None
        self.error_kind: Optional[str] = None
        self.idempotency_key = uuid.uuid4().hex
        self.progress = _empty_progress()

    # --- cart -------------------------------------------------------------

    def add_item(self, item: Dict[str, Any]) -> None:
        """Add a cart item or increase the quantity of an existing one."""
        self.ensure_editable()
        for line in self.cart:
            if line['id'] == item['id']:
                line['quantity'] = int(line['quantity']) + int(item['quantity'])
                return
        self.cart.append(dict(item))

    def update_quantity(self, item_id, quantity: int) -> None:
        self.ensure_editable()
        if quantity < 1:
            self.remove_item(item_id)
            return
        for line in self.cart:
            if line['id'] == item_id:
                line['quantity'] = int(quantity)
                return

    def remove_item(self, item_id) -> None:
        self.ensure_editable()
        self.cart = [line for line in self.cart if line['id'] != item_id]

    def quantity_of(self, item_id) -> int:
        for line in self.cart:
            if line['id'] == item_id:
                return int(line['quantity'])
        return 0

    # --- state machine ----------------------------------------------------

    @property
    def is_processing(self) -> bool:
        return self.payment_status == PaymentStatusState.PROCESSING

    def transition(self, target: str) -> None:
        if target not in ALLOWED_TRANSITIONS.get(self.payment_status, set()):
            raise BusinessLogicError(
                f'Transición de pago inválida: {self.payment_status} -> {target}', status_code=409
            )
        self.payment_status = target

    def ensure_editable(self) -> None:
        # Once a sale record exists the checkout must be closed, not edited
        if self.is_processing or self.progress.get('sale_id'):
            raise BusinessLogicError('La venta está en proceso; no se puede modificar', status_code=409)

    def reset(self) -> None:
        """Back to the initial empty state (new idempotency key included)."""
        self.__init__()

    # --- serialization ----------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            'cart': self.cart,
            'discount_percent': str(self.discount_percent),
            'is_wholesale': self.is_wholesale,
            'customer_id': self.customer_id,
            'repair_ids': self.repair_ids,
            'mark_delivered': self.mark_delivered,
            'use_final_cost_from_sale': self.use_final_cost_from_sale,
            'payment_method': self.payment_method,
            'is_mixed_payment': self.is_mixed_payment,
            'cash_received': str(self.cash_received),
            'card_number': self.card_number,
            'transfer_reference': self.transfer_reference,
            'installment_count': self.installment_count,
            'ledger_total': str(self.ledger.total),
            'splits': self.ledger.to_list(),
            'payment_status': self.payment_status,
            'payment_error': self.payment_error,
            'error_kind': self.error_kind,
            'idempotency_key': self.idempotency_key,
            'progress': self.progress,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'CheckoutSession':
        checkout = cls()
        if not data:
            return checkout
        checkout.cart = [dict(line) for line in data.get('cart', [])]
        checkout.discount_percent = to_decimal(data.get('discount_percent'))
        checkout.is_wholesale = bool(data.get('is_wholesale', False))
        checkout.customer_id = data.get('customer_id')
        checkout.repair_ids = list(data.get('repair_ids', []))
        checkout.mark_delivered = bool(data.get('mark_delivered', True))
        checkout.use_final_cost_from_sale = bool(data.get('use_final_cost_from_sale', False))
        checkout.payment_method = data.get('payment_method', 'cash')
        checkout.is_mixed_payment = bool(data.get('is_mixed_payment', False))
        checkout.cash_received = round2(data.get('cash_received'))
        checkout.card_number = data.get('card_number', '')
        checkout.transfer_reference = data.get('transfer_reference', '')
        checkout.installment_count = int(data.get('installment_count', 1) or 1)
        checkout.ledger = PaymentSplitLedger.from_list(data.get('ledger_total'), data.get('splits'))
        checkout.payment_status = data.get('payment_status', PaymentStatusState.IDLE)
        checkout.payment_error = data.get('payment_error')
        checkout.error_kind = data.get('error_kind')
        checkout.idempotency_key = data.get('idempotency_key') or checkout.idempotency_key
        checkout.progress = dict(_empty_progress(), **(data.get('progress') or {}))
        return checkout
