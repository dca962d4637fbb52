from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from datetime import datetime, timezone
from pathlib import Path


def _ensure_backend_on_path() -> None:
    backend_dir = Path(__file__).resolve().parents[1]
    if str(backend_dir) not in sys.path:
        sys.path.insert(0, str(backend_dir))


def _write_markdown(snapshot, out_path: Path) -> None:
    _ensure_backend_on_path()
    from common.metrics_engine.currency import format_currency

    filters = snapshot.filter_state
    currency = filters.display_currency
    period = "All time" if filters.is_all_time else f"{filters.year}-{filters.month + 1:02d}"
    lines = [
        f"# Dashboard Metrics ({period}, {currency.value})",
        "",
        f"Generated at: {snapshot.last_updated.isoformat() if snapshot.last_updated else 'n/a'}",
        "",
    ]
    if snapshot.error:
        lines.extend([f"**Error:** {snapshot.error}", ""])
    if snapshot.warnings:
        lines.append("## Warnings")
        for warning in snapshot.warnings:
            lines.append(f"- {warning}")
        lines.append("")

    kpis = snapshot.kpis
    if kpis is not None:
        lines.extend(
            [
                "## KPIs",
                f"- Total revenue: {format_currency(kpis.total_revenue, currency)}",
                f"  - Bookings: {format_currency(kpis.booking_revenue, currency)}",
                f"  - Tours (clamped profit): {format_currency(kpis.tour_profit, currency)}",
                f"  - Other income: {format_currency(kpis.transaction_revenue, currency)}",
                f"- Total expenses: {format_currency(kpis.total_expenses, currency)}",
                f"- Fleet utilization: {kpis.fleet_utilization}% ({kpis.vehicles_hired}/{kpis.total_fleet} hired)",
                f"- Active bookings: {kpis.active_bookings}",
                f"- Outstanding payments: {format_currency(kpis.outstanding_payments_total, currency)}"
                f" across {kpis.outstanding_payments_count} bookings",
                "",
            ]
        )
        if kpis.expense_breakdown:
            lines.append("## Expense breakdown")
            for row in kpis.expense_breakdown:
                lines.append(f"- {row.category}: {format_currency(row.amount, currency)}")
            lines.append("")

    series = snapshot.series
    if series is not None:
        lines.append("## Revenue vs expenses")
        lines.append("| Month | Revenue | Expenses |")
        lines.append("| --- | ---: | ---: |")
        for point in series.monthly_revenue_expenses:
            lines.append(
                f"| {point.month} {point.year} | {format_currency(point.revenue, currency)} |"
                f" {format_currency(point.expenses, currency)} |"
            )
        lines.append("")
        if series.top_vehicles:
            lines.append("## Top vehicles")
            for vehicle in series.top_vehicles:
                lines.append(
                    f"- {vehicle.name}: {format_currency(vehicle.revenue, currency)} ({vehicle.trips} trips)"
                )
            lines.append("")
    out_path.write_text("\n".join(lines))


def run_dashboard_once(store, *, filter_state=None, series_filters=None, config=None, clock=None):
    """Run a single refresh cycle against ``store`` and return the published snapshot."""
    _ensure_backend_on_path()
    from pipelines.change_feed import LocalChangeFeed
    from pipelines.sync import ChangeSyncCoordinator

    async def _run():
        coordinator = ChangeSyncCoordinator(
            store,
            LocalChangeFeed(),
            config=config,
            filter_state=filter_state,
            series_filters=series_filters,
            clock=clock,
        )
        try:
            await coordinator.refresh_now()
            return coordinator.get_snapshot()
        finally:
            coordinator.close()

    return asyncio.run(_run())


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Compute dashboard KPIs and series once and write JSON/MD outputs."
    )
    parser.add_argument(
        "--fixtures-dir",
        required=False,
        help="Directory of <collection>.json fixture files (e.g. src/backend/tests/fixtures/records).",
    )
    parser.add_argument(
        "--month",
        default="all",
        help="Global filter month, 1-12, or 'all' (default: all).",
    )
    parser.add_argument("--year", type=int, default=None, help="Global filter year (default: current year).")
    parser.add_argument("--currency", default="USD", help="Display currency (USD, UGX, KES).")
    parser.add_argument(
        "--output-dir",
        default=".",
        help="Output directory for report files (default: current directory).",
    )
    args = parser.parse_args()

    _ensure_backend_on_path()
    from common.metrics_engine.config import load_engine_config
    from common.metrics_engine.filters import FilterState
    from pipelines.record_store import InMemoryRecordStore, get_record_store

    data_source = os.getenv("DATA_SOURCE", "fixtures").strip().lower()
    if data_source == "live":
        store = get_record_store("live")
    elif args.fixtures_dir:
        store = InMemoryRecordStore.from_fixtures_dir(Path(args.fixtures_dir).resolve())
    else:
        store = get_record_store("fixtures")

    year = args.year or datetime.now(timezone.utc).year
    month = args.month.strip().lower()
    try:
        filter_state = FilterState(year=year, display_currency=args.currency.strip().upper())
        filter_state = filter_state.with_period("all" if month == "all" else int(month) - 1, year)
    except ValueError as exc:
        raise SystemExit(f"Invalid filter arguments: {exc}") from exc

    snapshot = run_dashboard_once(store, filter_state=filter_state, config=load_engine_config())

    output_dir = Path(args.output_dir).resolve()
    output_dir.mkdir(parents=True, exist_ok=True)
    suffix = "all" if filter_state.is_all_time else f"{year}-{filter_state.month + 1:02d}"
    base_name = f"dashboard_metrics_{suffix}"
    out_json = output_dir / f"{base_name}.json"
    out_md = output_dir / f"{base_name}.md"

    out_json.write_text(json.dumps(snapshot.model_dump(mode="json"), indent=2))
    _write_markdown(snapshot, out_md)

    print(f"Wrote {out_json}")
    print(f"Wrote {out_md}")
    return 1 if snapshot.error else 0


if __name__ == "__main__":
    raise SystemExit(main())
