"""
Voucher Grouping

Builds the voucher -> ledger -> item tree shown by the voucher drilldown
from the flat rows of one store page.

Key Concepts:
- A voucher (mstid) exclusively owns its ledger groups; a ledger group
  exclusively owns its item lines
- Items only exist under a ledger with a ledger_id. A voucher whose rows
  carry no ledger_id is emitted with no ledgers at all
- The tree is derived and rebuilt on every page; it is never stored

Grouping is page-scoped. A voucher whose rows straddle two pages yields
two partial cards, one per page (see src.data.pagination).
"""
import logging
import re
from dataclasses import dataclass, field
from functools import cmp_to_key
from typing import Any, Dict, List, Optional, Sequence, Tuple

from src.core.error_taxonomy import ErrorCategory, ErrorCollector, record_error
from src.core.periods import parse_date
from src.core.records import VoucherRow, parse_amount

logger = logging.getLogger(__name__)

# A zero voucher amount is only replaced when the ledgers add up to more than this
VOUCHER_AMOUNT_EPSILON = 0.5

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


@dataclass(frozen=True)
class ItemLine:
    item: str
    qty: float
    rate: Optional[float]     # None when qty is 0
    amt: float

    def to_dict(self) -> Dict[str, Any]:
        return {"item": self.item, "qty": self.qty, "rate": self.rate, "amt": self.amt}


@dataclass(frozen=True)
class LedgerGroup:
    ledger_id: str
    ledger: str
    isprty: Optional[str]
    ledger_amt: float
    items: Tuple[ItemLine, ...] = ()

    @property
    def has_items(self) -> bool:
        return len(self.items) > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ledger_id": self.ledger_id,
            "ledger": self.ledger,
            "isprty": self.isprty,
            "ledger_amt": self.ledger_amt,
            "items": [i.to_dict() for i in self.items],
        }


@dataclass(frozen=True)
class VoucherCard:
    mstid: str
    date: str
    vchtype: str
    vchno: str
    party: str
    voucher_amt: float
    ledgers: Tuple[LedgerGroup, ...] = ()

    @property
    def ledger_total(self) -> float:
        return sum(ledger.ledger_amt for ledger in self.ledgers)

    @property
    def item_count(self) -> int:
        return sum(len(ledger.items) for ledger in self.ledgers)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mstid": self.mstid,
            "date": self.date,
            "vchtype": self.vchtype,
            "vchno": self.vchno,
            "party": self.party,
            "voucher_amt": self.voucher_amt,
            "ledgers": [lg.to_dict() for lg in self.ledgers],
        }


@dataclass
class _LedgerDraft:
    ledger_id: str
    ledger: str
    isprty: Optional[str]
    ledger_amt: float
    items: List[ItemLine] = field(default_factory=list)


@dataclass
class _VoucherDraft:
    mstid: str
    date: str
    vchtype: str
    vchno: str
    party: str
    voucher_amt_raw: Any
    ledgers: Dict[str, _LedgerDraft] = field(default_factory=dict)


def parse_voucher_amount(raw: Any) -> float:
    """Read the voucher amount column with the same rules as parse_amount."""
    return parse_amount(raw, field_name="voucher amount")


def is_party_ledger(ledger: _LedgerDraft, party: str) -> bool:
    if ledger.isprty == "Yes":
        return True
    return bool(ledger.ledger) and bool(party) and ledger.ledger.lower() == party.lower()


def _index_rows(
    rows: Sequence[VoucherRow],
    errors: Optional[ErrorCollector],
) -> Dict[str, _VoucherDraft]:
    """Phase 1: one pass over the rows building drafts keyed by mstid."""
    drafts: Dict[str, _VoucherDraft] = {}

    for row in rows:
        if not row.mstid:
            record_error(errors, ErrorCategory.MISSING_IDENTITY,
                         f"voucher row without mstid (vchno={row.vchno!r})", phase="group_vouchers")
            continue

        voucher = drafts.get(row.mstid)
        if voucher is None:
            voucher = _VoucherDraft(
                mstid=row.mstid,
                date=row.date or "",
                vchtype=row.vchtype or "",
                vchno=row.vchno or "",
                party=row.party or "",
                voucher_amt_raw=row.voucher_amt,
            )
            drafts[row.mstid] = voucher

        if not row.ledger_id:
            if isinstance(row.item, str) and row.item.strip():
                record_error(errors, ErrorCategory.MISSING_FIELD,
                             f"item {row.item.strip()!r} without ledger in voucher {row.mstid}",
                             phase="group_vouchers")
            continue

        ledger = voucher.ledgers.get(row.ledger_id)
        if ledger is None:
            ledger = _LedgerDraft(
                ledger_id=row.ledger_id,
                ledger=row.ledger or "",
                isprty=row.isprty,
                ledger_amt=parse_amount(row.ledger_amt, errors, "ledgerAmt"),
            )
            voucher.ledgers[row.ledger_id] = ledger

        item_name = (row.item or "").strip() if isinstance(row.item, str) else ""
        if item_name:
            qty = parse_amount(row.qty, errors, "qty")
            amt = parse_amount(row.amt, errors, "amt")
            if qty == 0:
                record_error(errors, ErrorCategory.DIVISION_BY_ZERO,
                             f"zero quantity for {item_name!r} in voucher {row.mstid}", phase="group_vouchers")
            ledger.items.append(ItemLine(
                item=item_name,
                qty=qty,
                rate=amt / qty if qty != 0 else None,
                amt=amt,
            ))

    return drafts


def _ordered_ledgers(voucher: _VoucherDraft) -> List[_LedgerDraft]:
    """Party ledgers first, then ledgers with items, then larger amounts."""
    return sorted(
        voucher.ledgers.values(),
        key=lambda lg: (
            not is_party_ledger(lg, voucher.party),
            not lg.items,
            -lg.ledger_amt,
        ),
    )


def _derive_voucher_amount(voucher: _VoucherDraft, ledgers: List[_LedgerDraft], epsilon: float) -> float:
    amount = parse_voucher_amount(voucher.voucher_amt_raw)
    if amount == 0:
        ledger_sum = sum(abs(lg.ledger_amt) for lg in ledgers)
        if ledger_sum > epsilon:
            return ledger_sum
    return amount


def _freeze_cards(drafts: Dict[str, _VoucherDraft], epsilon: float) -> List[VoucherCard]:
    """Phase 2: drafts to immutable cards with ordered ledgers."""
    cards = []
    for voucher in drafts.values():
        ledgers = _ordered_ledgers(voucher)
        cards.append(VoucherCard(
            mstid=voucher.mstid,
            date=voucher.date,
            vchtype=voucher.vchtype,
            vchno=voucher.vchno,
            party=voucher.party,
            voucher_amt=_derive_voucher_amount(voucher, ledgers, epsilon),
            ledgers=tuple(
                LedgerGroup(
                    ledger_id=lg.ledger_id,
                    ledger=lg.ledger,
                    isprty=lg.isprty,
                    ledger_amt=lg.ledger_amt,
                    items=tuple(lg.items),
                )
                for lg in ledgers
            ),
        ))
    return cards


def compare_voucher_dates(date_a: str, date_b: str) -> int:
    """
    Compare two voucher dates, oldest first.

    Parseable dates compare as calendar dates; if either side does not
    parse, the raw strings are compared instead.
    """
    if _ISO_DATE.match(date_a) and _ISO_DATE.match(date_b):
        return (date_a > date_b) - (date_a < date_b)

    parsed_a, parsed_b = parse_date(date_a), parse_date(date_b)
    if parsed_a is not None and parsed_b is not None:
        return (parsed_a > parsed_b) - (parsed_a < parsed_b)
    return (date_a > date_b) - (date_a < date_b)


def group_vouchers(
    rows: Sequence[VoucherRow],
    errors: Optional[ErrorCollector] = None,
    epsilon: float = VOUCHER_AMOUNT_EPSILON,
) -> List[VoucherCard]:
    """
    Group one page of voucher rows into voucher cards.

    Args:
        rows: Rows of a single fetched page
        errors: Optional collector for skipped rows and parse failures
        epsilon: Minimum ledger sum that may replace a zero voucher amount

    Returns:
        Voucher cards in ascending date order (stable for equal dates)
    """
    drafts = _index_rows(rows, errors)
    cards = _freeze_cards(drafts, epsilon)
    cards.sort(key=cmp_to_key(lambda a, b: compare_voucher_dates(a.date, b.date)))

    logger.debug(f"Grouped {len(rows)} rows into {len(cards)} vouchers")
    return cards
