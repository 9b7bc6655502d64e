"""
Mock Sales Extract Generator

Generates fake sales vouchers shaped like the accounting backend's sales
extract (vouchers -> ledgers -> inventry), so dashboards, the voucher
drilldown and the offline cache can be exercised without a live company.

Usage:
    Set USE_MOCK_DATA=true in .env to enable mock data mode.

Output is deterministic for a given seed.
"""
import random
import logging
from datetime import date, timedelta
from typing import List, Dict, Any, Optional

from src.core.periods import format_day_month_year
from src.core.records import LineItem, VoucherRow, line_items_from_extract, voucher_rows_from_extract

logger = logging.getLogger(__name__)

# (party, pin code)
MOCK_CUSTOMERS = [
    ("ABC Traders", "560001"),
    ("Sri Lakshmi Stores", "560034"),
    ("Metro Wholesale", "400001"),
    ("Ganesh Agencies", "600017"),
    ("Kaveri Distributors", "570001"),
    ("Om Sai Enterprises", "411001"),
    ("New India Mart", "110001"),
    ("Sunrise Retail", "500001"),
    ("Balaji Provisions", "560034"),
    ("Royal Supermarket", "400001"),
    ("Green Leaf Foods", "682001"),
    ("City Bazaar", "110001"),
]

# (item, stock group, base rate, margin)
MOCK_ITEMS = [
    ("Basmati Rice 25kg", "Grains", 1850.0, 0.08),
    ("Sona Masoori 25kg", "Grains", 1320.0, 0.07),
    ("Toor Dal 1kg", "Pulses", 145.0, 0.10),
    ("Moong Dal 1kg", "Pulses", 128.0, 0.11),
    ("Sunflower Oil 1L", "Edible Oils", 165.0, 0.05),
    ("Groundnut Oil 1L", "Edible Oils", 210.0, 0.06),
    ("Sugar 50kg", "Sugar", 2150.0, 0.04),
    ("Jaggery 1kg", "Sugar", 72.0, 0.12),
    ("Tea Powder 500g", "Beverages", 240.0, 0.15),
    ("Filter Coffee 500g", "Beverages", 310.0, 0.18),
    ("Turmeric 200g", "Spices", 48.0, 0.22),
    ("Chilli Powder 200g", "Spices", 62.0, 0.20),
]


def generate_mock_voucher(
    rng: random.Random,
    mstid: int,
    voucher_date: date,
) -> Dict[str, Any]:
    """
    Generate one sales voucher.

    The party ledger carries the voucher total; the sales ledger carries
    the inventory lines; tax and freight ledgers are added at random.
    """
    party, pincode = rng.choice(MOCK_CUSTOMERS)
    lines = []
    for item, group, base_rate, margin in rng.sample(MOCK_ITEMS, rng.randint(1, 4)):
        qty = rng.randint(1, 40)
        rate = round(base_rate * rng.uniform(0.95, 1.05), 2)
        amt = round(qty * rate, 2)
        lines.append({
            "item": item,
            "group": group,
            "qty": qty,
            "rate": rate,
            "amt": amt,
            "profit": round(amt * margin * rng.uniform(0.5, 1.5), 2),
        })

    sales_total = round(sum(line["amt"] for line in lines), 2)
    ledgers = [{
        "ledger": "Sales Account",
        "ledgerid": f"{mstid}-S",
        "isprty": "No",
        "amt": sales_total,
        "inventry": lines,
    }]
    if rng.random() < 0.6:
        tax = round(sales_total * 0.025, 2)
        ledgers.append({"ledger": "Output CGST", "ledgerid": f"{mstid}-C", "isprty": "No", "amt": tax})
        ledgers.append({"ledger": "Output SGST", "ledgerid": f"{mstid}-G", "isprty": "No", "amt": tax})
    if rng.random() < 0.2:
        ledgers.append({"ledger": "Freight Outward", "ledgerid": f"{mstid}-F", "isprty": "No",
                        "amt": float(rng.choice([150, 250, 400]))})

    voucher_total = round(sum(ledger["amt"] for ledger in ledgers), 2)
    ledgers.insert(0, {"ledger": party, "ledgerid": f"{mstid}-P", "isprty": "Yes", "amt": voucher_total})

    return {
        "mstid": str(mstid),
        "alterid": mstid,
        "date": format_day_month_year(voucher_date),
        "vchno": f"INV-{mstid:05d}",
        "vchtype": "Sales",
        "reservedname": "Sales",
        "party": party,
        "pincode": pincode,
        # Some exports leave the voucher amount blank; ledgers still add up
        "amt": "" if rng.random() < 0.05 else f"{voucher_total:.2f}",
        "ledgers": ledgers,
    }


def generate_mock_sales_extract(
    start_date: date,
    end_date: date,
    vouchers_per_day: int = 3,
    seed: int = 42,
    first_mstid: int = 1000,
) -> List[Dict[str, Any]]:
    """
    Generate mock sales extract vouchers for every day of a date range.

    Args:
        start_date: First voucher date
        end_date: Last voucher date (inclusive)
        vouchers_per_day: Upper bound of vouchers per day (0..N per day)
        seed: Random seed; the same seed gives the same vouchers
        first_mstid: Master id of the first voucher

    Returns:
        List of voucher dicts in date order
    """
    rng = random.Random(seed)
    vouchers = []
    mstid = first_mstid
    current = start_date

    while current <= end_date:
        for _ in range(rng.randint(0, vouchers_per_day)):
            vouchers.append(generate_mock_voucher(rng, mstid, current))
            mstid += 1
        current += timedelta(days=1)

    logger.info(f"Generated {len(vouchers)} mock sales vouchers ({start_date} to {end_date})")
    return vouchers


def generate_mock_line_items(
    start_date: date,
    end_date: date,
    seed: int = 42,
) -> List[LineItem]:
    """Mock sales lines for dashboards."""
    return line_items_from_extract(generate_mock_sales_extract(start_date, end_date, seed=seed))


def generate_mock_voucher_rows(
    start_date: date,
    end_date: date,
    seed: int = 42,
) -> List[VoucherRow]:
    """Mock voucher store rows for the voucher drilldown."""
    return voucher_rows_from_extract(generate_mock_sales_extract(start_date, end_date, seed=seed))


def generate_mock_closing_stock(seed: int = 42, items: Optional[List[str]] = None) -> Dict[str, float]:
    """Closing quantity per item, for days-of-stock."""
    rng = random.Random(seed)
    names = items if items is not None else [item for item, _, _, _ in MOCK_ITEMS]
    return {name: float(rng.randint(0, 400)) for name in names}
