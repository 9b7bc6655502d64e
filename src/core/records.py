"""
Source Records

Immutable shapes for the two kinds of raw data the engine consumes:
- LineItem: one sales line (invoice x item) from the sales store or API
- VoucherRow: one voucher/ledger/item row from the paginated voucher store

Raw dictionaries are mapped onto these through config/field_map.yaml so
camelCase API payloads, snake_case cache rows and CSV exports all load
the same way. Unreadable numbers become 0.0; nothing here raises.
"""
import re
import math
import logging
from pathlib import Path
from dataclasses import dataclass, asdict
from datetime import date
from functools import lru_cache
from typing import Any, Dict, List, Optional

from src.core.error_taxonomy import ErrorCategory, ErrorCollector, record_error
from src.core.periods import parse_date

logger = logging.getLogger(__name__)

_FALLBACK_FIELD_MAP: Dict[str, Dict[str, List[str]]] = {
    "line_item": {
        "id": ["id"],
        "date": ["date"],
        "invoice_number": ["invoiceNumber", "invoice_number"],
        "customer": ["customer"],
        "item_name": ["itemName", "item_name"],
        "stock_group": ["stockGroup", "stock_group"],
        "pin_code": ["pinCode", "pin_code"],
        "quantity": ["quantity"],
        "rate": ["rate"],
        "amount": ["amount"],
        "profit": ["profit"],
        "master_id": ["masterId", "master_id"],
    },
    "voucher_row": {
        "mstid": ["mstid"],
        "date": ["date"],
        "vchtype": ["vchtype"],
        "vchno": ["vchno"],
        "party": ["party"],
        "voucher_amt": ["voucherAmt", "voucher_amt"],
        "ledger_id": ["ledger_id"],
        "ledger": ["ledger"],
        "isprty": ["isprty"],
        "ledger_amt": ["ledgerAmt", "ledger_amt"],
        "item": ["item"],
        "qty": ["qty"],
        "amt": ["amt"],
    },
}


def _get_config_dir() -> Path:
    """Get the config directory path."""
    return Path(__file__).parent.parent.parent / "config"


@lru_cache(maxsize=1)
def load_field_map(path: Optional[str] = None) -> Dict[str, Dict[str, List[str]]]:
    """Load raw-key aliases from field_map.yaml, falling back to built-ins."""
    yaml_path = Path(path) if path else _get_config_dir() / "field_map.yaml"
    if not yaml_path.exists():
        logger.warning(f"Field map not found at {yaml_path}. Using fallback.")
        return _FALLBACK_FIELD_MAP

    import yaml
    with open(yaml_path, "r", encoding="utf-8") as f:
        loaded = yaml.safe_load(f) or {}
    logger.info(f"Loaded field map from {yaml_path}")

    merged = {section: dict(fields) for section, fields in _FALLBACK_FIELD_MAP.items()}
    for section, fields in loaded.items():
        merged.setdefault(section, {}).update(fields or {})
    return merged


def _pick(raw: Dict[str, Any], aliases: List[str]) -> Any:
    for alias in aliases:
        if alias in raw:
            return raw[alias]
    return None


def _clean_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


# Leading number of a cleaned string, the way parseFloat reads it
_LEADING_NUMBER = re.compile(r"-?(?:\d+\.?\d*|\.\d+)")


def parse_amount(
    value: Any,
    errors: Optional[ErrorCollector] = None,
    field_name: str = "amount",
) -> float:
    """
    Parse a numeric field, returning 0.0 for anything unreadable.

    Strings are stripped of everything except digits, '.' and '-' first,
    so "₹1,23,456.50" reads as 123456.5. Only the leading number counts:
    "1,234.50-" reads as 1234.5 and "1.2.3" as 1.2. Booleans are not
    amounts and read as 0.0.
    """
    if value is None or value == "":
        return 0.0
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # NULL numeric columns come back from pandas as NaN
        return 0.0 if math.isnan(value) else float(value)
    if isinstance(value, str):
        match = _LEADING_NUMBER.match(re.sub(r"[^0-9.\-]", "", value))
        if match:
            return float(match.group(0))
        record_error(errors, ErrorCategory.AMOUNT_PARSE_FAILURE,
                     f"unreadable {field_name} {value!r}", phase="records")
        return 0.0
    record_error(errors, ErrorCategory.AMOUNT_PARSE_FAILURE,
                 f"unsupported {field_name} type {type(value).__name__}", phase="records")
    return 0.0


@dataclass(frozen=True)
class LineItem:
    """One sales line. Immutable once fetched."""
    id: str
    date: str
    invoice_number: str
    customer: str
    item_name: str
    stock_group: str
    pin_code: str
    quantity: float
    rate: float
    amount: float
    profit: float
    master_id: Optional[str] = None

    @property
    def canonical_date(self) -> Optional[date]:
        return parse_date(self.date)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any], errors: Optional[ErrorCollector] = None) -> "LineItem":
        fields = load_field_map()["line_item"]
        master_id = _pick(raw, fields["master_id"])
        raw_date = _pick(raw, fields["date"])
        return cls(
            id=_clean_text(_pick(raw, fields["id"])),
            date=raw_date.isoformat() if isinstance(raw_date, date) else _clean_text(raw_date),
            invoice_number=_clean_text(_pick(raw, fields["invoice_number"])),
            customer=_clean_text(_pick(raw, fields["customer"])),
            item_name=_clean_text(_pick(raw, fields["item_name"])),
            stock_group=_clean_text(_pick(raw, fields["stock_group"])),
            pin_code=_clean_text(_pick(raw, fields["pin_code"])),
            quantity=parse_amount(_pick(raw, fields["quantity"]), errors, "quantity"),
            rate=parse_amount(_pick(raw, fields["rate"]), errors, "rate"),
            amount=parse_amount(_pick(raw, fields["amount"]), errors, "amount"),
            profit=parse_amount(_pick(raw, fields["profit"]), errors, "profit"),
            master_id=_clean_text(master_id) if master_id is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class VoucherRow:
    """
    One row of the voucher store. Several rows share an mstid when a
    voucher has more than one ledger or item. Numeric columns keep their
    raw form; the grouper parses them.
    """
    mstid: Optional[str]
    date: str = ""
    vchtype: str = ""
    vchno: str = ""
    party: str = ""
    voucher_amt: Any = None
    ledger_id: Optional[str] = None
    ledger: Optional[str] = None
    isprty: Optional[str] = None
    ledger_amt: Any = None
    item: Optional[str] = None
    qty: Any = None
    amt: Any = None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "VoucherRow":
        fields = load_field_map()["voucher_row"]
        mstid = _pick(raw, fields["mstid"])
        ledger_id = _pick(raw, fields["ledger_id"])
        return cls(
            mstid=str(mstid) if mstid not in (None, "") else None,
            date=_clean_text(_pick(raw, fields["date"])),
            vchtype=_clean_text(_pick(raw, fields["vchtype"])),
            vchno=_clean_text(_pick(raw, fields["vchno"])),
            party=_clean_text(_pick(raw, fields["party"])),
            voucher_amt=_pick(raw, fields["voucher_amt"]),
            ledger_id=str(ledger_id) if ledger_id not in (None, "") else None,
            ledger=_pick(raw, fields["ledger"]),
            isprty=_pick(raw, fields["isprty"]),
            ledger_amt=_pick(raw, fields["ledger_amt"]),
            item=_pick(raw, fields["item"]),
            qty=_pick(raw, fields["qty"]),
            amt=_pick(raw, fields["amt"]),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def load_line_items(
    raw_rows: List[Dict[str, Any]],
    errors: Optional[ErrorCollector] = None,
) -> List[LineItem]:
    """Map raw dictionaries to LineItems, preserving order."""
    items = [LineItem.from_dict(row, errors) for row in raw_rows]
    logger.debug(f"Loaded {len(items)} line items")
    return items


# Sales extract payloads: vouchers -> ledgers -> inventry (item lines)

def _extract_ledgers(voucher: Dict[str, Any]) -> List[Dict[str, Any]]:
    ledgers = voucher.get("ledgers")
    return ledgers if isinstance(ledgers, list) else []


def _extract_items(ledger: Dict[str, Any]) -> List[Dict[str, Any]]:
    items = ledger.get("inventry")
    return items if isinstance(items, list) else []


def line_items_from_extract(
    vouchers: List[Dict[str, Any]],
    errors: Optional[ErrorCollector] = None,
) -> List[LineItem]:
    """
    One LineItem per inventory line of every voucher.

    The voucher supplies date, invoice number, customer and pin code; the
    inventory line supplies item, stock group, quantity, amount and profit.
    """
    items: List[LineItem] = []
    for voucher in vouchers:
        mstid = _clean_text(voucher.get("mstid"))
        if not mstid:
            record_error(errors, ErrorCategory.MISSING_IDENTITY,
                         f"extract voucher without mstid (vchno={voucher.get('vchno')!r})", phase="records")
            continue
        for ledger in _extract_ledgers(voucher):
            for index, line in enumerate(_extract_items(ledger)):
                quantity = parse_amount(line.get("qty"), errors, "qty")
                amount = parse_amount(line.get("amt"), errors, "amt")
                rate = line.get("rate")
                items.append(LineItem(
                    id=f"{mstid}-{_clean_text(ledger.get('ledgerid'))}-{index}",
                    date=_clean_text(voucher.get("date")),
                    invoice_number=_clean_text(voucher.get("vchno")),
                    customer=_clean_text(voucher.get("party")),
                    item_name=_clean_text(line.get("item")),
                    stock_group=_clean_text(line.get("group")),
                    pin_code=_clean_text(voucher.get("pincode")),
                    quantity=quantity,
                    rate=parse_amount(rate, errors, "rate") if rate is not None else (amount / quantity if quantity else 0.0),
                    amount=amount,
                    profit=parse_amount(line.get("profit"), errors, "profit"),
                    master_id=mstid,
                ))
    logger.debug(f"Flattened {len(vouchers)} extract vouchers into {len(items)} line items")
    return items


def voucher_rows_from_extract(vouchers: List[Dict[str, Any]]) -> List[VoucherRow]:
    """
    The rows a voucher/ledger/inventory LEFT JOIN would return.

    A voucher without ledgers gives one row with no ledger; a ledger
    without inventory gives one row with an empty item.
    """
    rows: List[VoucherRow] = []
    for voucher in vouchers:
        mstid = voucher.get("mstid")
        header = dict(
            mstid=str(mstid) if mstid not in (None, "") else None,
            date=_clean_text(voucher.get("date")),
            vchtype=_clean_text(voucher.get("vchtype")),
            vchno=_clean_text(voucher.get("vchno")),
            party=_clean_text(voucher.get("party")),
            voucher_amt=voucher.get("amt"),
        )
        ledgers = _extract_ledgers(voucher)
        if not ledgers:
            rows.append(VoucherRow(**header))
            continue
        for ledger in ledgers:
            ledger_fields = dict(
                ledger_id=_clean_text(ledger.get("ledgerid")) or None,
                ledger=ledger.get("ledger"),
                isprty=ledger.get("isprty"),
                ledger_amt=ledger.get("amt", 0),
            )
            lines = _extract_items(ledger)
            if not lines:
                rows.append(VoucherRow(**header, **ledger_fields, item="", qty=0, amt=0))
                continue
            for line in lines:
                rows.append(VoucherRow(**header, **ledger_fields,
                                       item=line.get("item", ""), qty=line.get("qty", 0), amt=line.get("amt", 0)))
    return rows


def tables_from_extract(
    vouchers: List[Dict[str, Any]],
    company_guid: str = "",
    location_id: Optional[int] = None,
) -> Dict[str, List[Dict[str, Any]]]:
    """Split extract vouchers into the vouchers / ledgers / inventories cache tables."""
    tables: Dict[str, List[Dict[str, Any]]] = {"vouchers": [], "ledgers": [], "inventories": []}
    scope = {"company_guid": company_guid, "tallyloc_id": location_id}

    for voucher in vouchers:
        mstid = _clean_text(voucher.get("mstid"))
        parsed = parse_date(voucher.get("date"))
        tables["vouchers"].append({
            "mstid": mstid,
            "date": _clean_text(voucher.get("date")),
            "date_iso": parsed.isoformat() if parsed else None,
            "vchtype": _clean_text(voucher.get("vchtype")),
            "reservedname": _clean_text(voucher.get("reservedname")),
            "vchno": _clean_text(voucher.get("vchno")),
            "party": _clean_text(voucher.get("party")),
            "amt": parse_amount(voucher.get("amt")),
            **scope,
        })
        for ledger in _extract_ledgers(voucher):
            ledger_id = _clean_text(ledger.get("ledgerid"))
            tables["ledgers"].append({
                "ledgerid": ledger_id,
                "voucher_id": mstid,
                "ledger": _clean_text(ledger.get("ledger")),
                "isprty": ledger.get("isprty"),
                "amt": parse_amount(ledger.get("amt")),
                **scope,
            })
            for line in _extract_items(ledger):
                tables["inventories"].append({
                    "ledger_id": ledger_id,
                    "voucher_id": mstid,
                    "item": _clean_text(line.get("item")),
                    "qty": parse_amount(line.get("qty")),
                    "amt": parse_amount(line.get("amt")),
                    **scope,
                })
    return tables
