# vulnsync - Command Line Entry Point
#
# Subcommands:
#   ingest                one ingestion cycle (plus fan-out), print report
#   serve                 run the scheduler until interrupted
#   status                threat / correlation store statistics
#   correlations TENANT   list a tenant's correlations by risk score

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import Optional

from . import __version__
from .core import AuditLogger, Settings, load_settings, set_audit_logger
from .intel import (
    CorrelationEngine,
    CorrelationStore,
    FanOutCoordinator,
    IngestionOrchestrator,
    InventoryError,
    KEVFetcher,
    NVDFetcher,
    Normalizer,
    ThreatSeverity,
    ThreatStore,
    load_inventory,
)


def build_orchestrator(settings: Settings) -> IngestionOrchestrator:
    """Wire the full pipeline from resolved settings."""
    inventory = load_inventory(settings.inventory_file)
    threat_store = ThreatStore(str(settings.threat_db))
    correlation_store = CorrelationStore(str(settings.correlation_db))

    nvd = NVDFetcher()
    nvd.configure(
        base_url=settings.nvd_url,
        timeout=settings.request_timeout,
        days_back=settings.nvd_days_back,
        results_per_page=settings.nvd_page_size,
    )
    kev = KEVFetcher()
    kev.configure(base_url=settings.kev_url, timeout=settings.request_timeout)

    engine = CorrelationEngine(
        threat_store,
        correlation_store,
        inventory,
        scan_limit=settings.scan_limit,
        threat_window_days=settings.threat_window_days,
    )
    return IngestionOrchestrator(
        fetchers=[nvd, kev],
        normalizer=Normalizer(threat_store),
        coordinator=FanOutCoordinator(engine, inventory, max_workers=settings.fanout_workers),
        interval_seconds=settings.interval_seconds,
    )


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def _cmd_ingest(settings: Settings, args) -> int:
    report = build_orchestrator(settings).trigger_manual()
    _print_json(report.to_dict())
    return 0 if report.sources_succeeded else 1


def _cmd_serve(settings: Settings, args) -> int:
    orchestrator = build_orchestrator(settings)
    orchestrator.start(run_immediately=not args.no_initial_run)
    print(f"vulnsync scheduler running every {settings.interval_seconds}s, Ctrl+C to stop")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        print("\nShutting down scheduler...")
    finally:
        orchestrator.stop()
    return 0


def _cmd_status(settings: Settings, args) -> int:
    threats = ThreatStore(str(settings.threat_db))
    correlations = CorrelationStore(str(settings.correlation_db))
    try:
        _print_json({
            "threats": threats.stats(),
            "correlations": correlations.count(),
        })
    finally:
        threats.close()
        correlations.close()
    return 0


def _cmd_correlations(settings: Settings, args) -> int:
    store = CorrelationStore(str(settings.correlation_db))
    try:
        rows = store.for_tenant(
            args.tenant,
            severity=args.severity,
            exploited=True if args.exploited else None,
            min_risk_score=args.min_risk,
            limit=args.limit,
        )
        _print_json({
            "tenant_id": args.tenant,
            "summary": store.tenant_summary(args.tenant),
            "correlations": [c.to_dict() for c in rows],
        })
    finally:
        store.close()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vulnsync",
        description="Vulnerability feed ingestion and per-tenant correlation",
    )
    parser.add_argument("--version", action="version", version=f"vulnsync v{__version__}")
    parser.add_argument("--env-file", default=None, help="Path to a .env file")
    parser.add_argument(
        "--inventory",
        default=None,
        help="Software inventory JSON export (overrides VULNSYNC_INVENTORY_FILE)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("ingest", help="Run one ingestion cycle and exit")

    serve = sub.add_parser("serve", help="Run scheduled ingestion until interrupted")
    serve.add_argument(
        "--no-initial-run",
        action="store_true",
        help="Wait one interval before the first cycle",
    )

    sub.add_parser("status", help="Show store statistics")

    corr = sub.add_parser("correlations", help="List a tenant's correlations")
    corr.add_argument("tenant", help="Tenant id")
    corr.add_argument(
        "--severity",
        action="append",
        type=str.lower,
        choices=[s.value for s in ThreatSeverity],
        help="Filter by severity (repeatable)",
    )
    corr.add_argument("--exploited", action="store_true", help="Only exploited threats")
    corr.add_argument("--min-risk", type=int, default=None, help="Minimum risk score")
    corr.add_argument("--limit", type=int, default=20)

    return parser


COMMANDS = {
    "ingest": _cmd_ingest,
    "serve": _cmd_serve,
    "status": _cmd_status,
    "correlations": _cmd_correlations,
}


def main(argv: Optional[list] = None) -> int:
    """Main entry point for the vulnsync CLI."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = load_settings(args.env_file)
    except ValueError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2
    if args.inventory:
        settings.inventory_file = Path(args.inventory)

    set_audit_logger(AuditLogger(settings.audit_dir))
    try:
        return COMMANDS[args.command](settings, args)
    except InventoryError as exc:
        print(f"Inventory error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
