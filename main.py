#!/usr/bin/env python3
"""
Sales Reporting Engine - Main Entry Point

Usage:
    python main.py dashboard --start 2025-04-01 --end 2025-06-30   # Sales dashboard
    python main.py vouchers --start 2025-04-01 --end 2025-04-30    # Voucher drilldown page
    python main.py sync --start 2025-04-01 --end 2025-06-30        # Fill the offline voucher cache
    python main.py setup                                            # Validate configuration
"""
import os
import sys
import json
import argparse
import logging
from datetime import date
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(),
        logging.FileHandler('reports.log'),
    ]
)
logger = logging.getLogger(__name__)


def setup_environment():
    """Load environment variables from .env file if present."""
    env_file = PROJECT_ROOT / '.env'
    if env_file.exists():
        logger.info("Loading environment from .env file")
        with open(env_file) as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith('#') and '=' in line:
                    key, value = line.split('=', 1)
                    os.environ.setdefault(key.strip(), value.strip())


def _iso_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {value!r}")


def _format_amount(value: float) -> str:
    return f"{value:,.2f}"


def _build_state(args):
    from config.settings import get_config
    from src.core.drilldown import (
        ChartBarClicked, EntitySelected, FiltersApplied, MetricCardOpened,
        initial_state, replay,
    )
    from src.core.filters import Dimension, apply_filters

    state = initial_state(get_config().report)
    filters = apply_filters(
        state.filters,
        periodicity=args.periodicity or state.filters.periodicity,
        metric_type=args.metric,
        scale_factor=args.scale,
    )
    actions = [FiltersApplied(filters)]
    for dimension, value in (
        (Dimension.CUSTOMER, args.customer),
        (Dimension.ITEM, args.item),
        (Dimension.STOCK_GROUP, args.stock_group),
        (Dimension.PIN_CODE, args.pin_code),
    ):
        if value:
            actions.append(ChartBarClicked(dimension, value))
    if args.open:
        actions.append(MetricCardOpened(Dimension.CUSTOMER if args.open == "customers" else Dimension.ITEM))
        if args.select:
            actions.append(EntitySelected(args.select))
    return replay(state, *actions)


def cmd_dashboard(args):
    """Build and print a sales dashboard."""
    from src.core.error_taxonomy import ErrorCollector
    from src.core.observability import get_tracer
    from src.reports.dashboard import SalesDashboard
    from src.tools.sales_client import get_sales_retriever

    tracer = get_tracer()
    errors = ErrorCollector()
    state = _build_state(args)

    with tracer.start_trace("dashboard"):
        retriever = get_sales_retriever()
        records = retriever.get_line_items(args.start, args.end, errors)
        closing_stock = None
        if args.open == "items" and retriever.config.use_mock_data:
            from src.tools.mock_data_generator import generate_mock_closing_stock
            closing_stock = generate_mock_closing_stock()
        report = SalesDashboard(records, closing_stock=closing_stock).build(
            state, entity_sort=args.sort, errors=errors)

    if args.json:
        print(json.dumps(report.to_dict(), indent=2, default=str))
        return

    m = report.metrics
    print("\n" + "="*60)
    print(f"SALES DASHBOARD  {args.start} to {args.end}  [{state.level.value}]")
    print("="*60)
    print(f"  Revenue:          {_format_amount(m.total_revenue)}")
    print(f"  Profit:           {_format_amount(m.total_profit)}")
    print(f"  Orders:           {m.total_orders}")
    print(f"  Quantity:         {_format_amount(m.total_quantity)}")
    print(f"  Customers/Items:  {m.unique_customers}/{m.unique_items}")
    print(f"  Avg order value:  {_format_amount(m.avg_order_value)}")

    for chart in report.charts.values():
        print("\n" + "-"*60)
        print(chart.title + (f"  (filter: {chart.selected})" if chart.selected != "all" else ""))
        print("-"*60)
        for row in chart.rows:
            print(f"  {row.dimension_value or '(blank)':<32} {_format_amount(row.metric_value):>16}")

    if report.trend:
        print("\n" + "-"*60)
        print(report.trend.title)
        print("-"*60)
        for point in report.trend.points:
            print(f"  {point.label:<24} {_format_amount(point.value):>16}")

    if report.entity_list:
        print("\n" + "-"*60)
        print(f"{state.entity_type.value.upper()} LIST")
        print("-"*60)
        for entry in report.entity_list:
            row = entry.row
            stock = f"  {entry.days_of_stock}d stock" if entry.days_of_stock is not None else ""
            print(f"  {row.dimension_value:<32} {_format_amount(row.revenue):>14} "
                  f"{row.profit_percent:6.1f}%{stock}")

    for invoice in report.invoices:
        print(f"\n  {invoice.date}  {invoice.invoice_number}  {invoice.customer}  "
              f"{_format_amount(invoice.total_amount)}")
        for line in invoice.items:
            print(f"      {line.item_name:<28} {line.quantity:>8g} x {_format_amount(line.rate)}")

    print(f"\nIssues: {report.issues}")


def cmd_vouchers(args):
    """Load and print one page of the voucher drilldown."""
    from config.settings import PaginationMode, get_config
    from src.core.error_taxonomy import ErrorCollector
    from src.data.pagination import InMemoryVoucherStore, PaginatedVoucherLoader, SqliteVoucherStore

    config = get_config()
    if config.data_source.use_mock_data:
        from src.tools.mock_data_generator import generate_mock_voucher_rows
        store = InMemoryVoucherStore(generate_mock_voucher_rows(args.start, args.end))
    else:
        store = SqliteVoucherStore(config.data_source.sqlite_path)

    errors = ErrorCollector()
    loader = PaginatedVoucherLoader(
        store,
        page_size=args.page_size,
        mode=PaginationMode(args.mode) if args.mode else None,
        epsilon=config.report.voucher_amount_epsilon,
        errors=errors,
    )
    filter_keys = {"vchtype": args.vchtype} if args.vchtype else {}
    loader.set_query(args.start, args.end, filter_keys,
                     config.data_source.company_guid or None, config.data_source.location_id)
    page = loader.load_page(args.page)

    if args.json:
        print(json.dumps(page.to_dict(), indent=2, default=str))
        return

    print("\n" + "="*60)
    print(f"VOUCHERS  page {page.page_index + 1}/{page.total_pages}  total {page.total}  ({page.mode.value})")
    print("="*60)
    for card in page.cards:
        print(f"\n{card.date}  {card.vchtype} {card.vchno}  {card.party}  {_format_amount(card.voucher_amt)}")
        for ledger in card.ledgers:
            print(f"    {ledger.ledger:<36} {_format_amount(ledger.ledger_amt):>14}")
            for line in ledger.items:
                rate = _format_amount(line.rate) if line.rate is not None else "-"
                print(f"        {line.item:<30} {line.qty:>8g} @ {rate:>10} = {_format_amount(line.amt)}")
    print(f"\nIssues: {errors.summary()}")


def cmd_sync(args):
    """Fetch sales vouchers and store them in the offline cache."""
    from config.settings import get_config
    from src.data.pagination import SqliteVoucherStore
    from src.core.records import tables_from_extract
    from src.tools.sales_client import get_sales_retriever

    config = get_config().data_source
    extract = get_sales_retriever().get_extract(args.start, args.end)
    tables = tables_from_extract(extract.vouchers, config.company_guid, config.location_id)

    store = SqliteVoucherStore(config.sqlite_path)
    try:
        store.seed(tables["vouchers"], tables["ledgers"], tables["inventories"])
    finally:
        store.close()
    print(f"Stored {len(tables['vouchers'])} vouchers in {config.sqlite_path}")


def cmd_setup(args):
    """Validate configuration and setup."""
    from config.settings import get_config

    print("\n" + "="*60)
    print("CONFIGURATION VALIDATION")
    print("="*60)

    config = get_config()

    print(f"\n📊 Report Defaults:")
    print(f"   Page size: {config.report.page_size}")
    print(f"   Periodicity: {config.report.default_periodicity}")
    print(f"   Scale factor: {config.report.default_scale_factor}")
    print(f"   Avg sales window: {config.report.avg_window_days} days")
    print(f"   Pagination: {config.report.pagination_mode.value}")

    print(f"\n📦 Data Source:")
    ds = config.data_source
    checks = [
        ("API Base URL", ds.api_base_url),
        ("API Token", ds.api_token),
        ("Company GUID", ds.company_guid),
        ("Location ID", ds.location_id),
    ]
    for name, value in checks:
        status = "✅" if value else "❌"
        print(f"   {status} {name}: {'Set' if value else 'MISSING'}")
    print(f"   Mock data: {'on' if ds.use_mock_data else 'off'}")
    print(f"   Voucher cache: {ds.sqlite_path}")

    problems = config.validate()
    print("\n" + "="*60)
    if problems:
        for name, problem in problems.items():
            print(f"❌ {name}: {problem}")
    else:
        print("✅ Configuration OK")
    print("="*60)


def _add_range_args(parser):
    parser.add_argument('--start', type=_iso_date, required=True, help='First day (YYYY-MM-DD)')
    parser.add_argument('--end', type=_iso_date, required=True, help='Last day (YYYY-MM-DD)')


def main():
    setup_environment()

    from config.settings import get_config
    logging.getLogger().setLevel(get_config().log_level.upper())

    parser = argparse.ArgumentParser(
        description="Sales Reporting Engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py dashboard --start 2025-04-01 --end 2025-06-30 --periodicity weekly
  python main.py dashboard --start 2025-04-01 --end 2025-06-30 --open customers --select "ABC Traders"
  python main.py vouchers --start 2025-04-01 --end 2025-04-30 --page 2 --mode voucher_keyed
  python main.py setup

Environment Variables:
  USE_MOCK_DATA           Use generated data instead of the backend
  SALES_API_BASE_URL      Backend base URL
  SALES_API_TOKEN         Bearer token
  VOUCHER_DB_PATH         Offline voucher cache (SQLite)
  REPORT_PAGINATION_MODE  row_offset or voucher_keyed
        """
    )

    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    # Dashboard command
    dashboard_parser = subparsers.add_parser('dashboard', help='Build a sales dashboard')
    _add_range_args(dashboard_parser)
    dashboard_parser.add_argument('--periodicity', choices=['daily', 'weekly', 'monthly', 'quarterly', 'yearly'])
    dashboard_parser.add_argument('--metric', choices=['sales', 'profit'], default='sales')
    dashboard_parser.add_argument('--scale', type=int, default=1, choices=[1, 10, 100, 1000, 100000, 10000000])
    dashboard_parser.add_argument('--customer', help='Customer chart filter')
    dashboard_parser.add_argument('--item', help='Item chart filter')
    dashboard_parser.add_argument('--stock-group', dest='stock_group', help='Stock group chart filter')
    dashboard_parser.add_argument('--pin-code', dest='pin_code', help='Pin code chart filter')
    dashboard_parser.add_argument('--open', choices=['customers', 'items'], help='Open a drilldown list')
    dashboard_parser.add_argument('--select', help='Entity of the open list to show invoices for')
    dashboard_parser.add_argument('--sort', choices=['sales', 'sales-desc', 'profit', 'profit-desc',
                                                     'profitPercent', 'profitPercent-desc'])
    dashboard_parser.add_argument('--json', action='store_true', help='Print JSON')
    dashboard_parser.set_defaults(func=cmd_dashboard)

    # Vouchers command
    vouchers_parser = subparsers.add_parser('vouchers', help='Show a voucher drilldown page')
    _add_range_args(vouchers_parser)
    vouchers_parser.add_argument('--page', type=int, default=0, help='Zero-based page index')
    vouchers_parser.add_argument('--page-size', dest='page_size', type=int)
    vouchers_parser.add_argument('--mode', choices=['row_offset', 'voucher_keyed'])
    vouchers_parser.add_argument('--vchtype', help='Voucher type filter')
    vouchers_parser.add_argument('--json', action='store_true', help='Print JSON')
    vouchers_parser.set_defaults(func=cmd_vouchers)

    # Sync command
    sync_parser = subparsers.add_parser('sync', help='Fill the offline voucher cache')
    _add_range_args(sync_parser)
    sync_parser.set_defaults(func=cmd_sync)

    # Setup command
    setup_parser = subparsers.add_parser('setup', help='Validate setup')
    setup_parser.set_defaults(func=cmd_setup)

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    try:
        args.func(args)
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except Exception as e:
        logger.error(f"Error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
