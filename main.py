"""
Key Vault ACME renewer — CLI entry point.

Usage:
  python main.py --once                       # Run one renewal pass immediately
  python main.py --schedule                   # Run daily at SCHEDULE_TIME (first run immediately)
  python main.py --once --zones example.com   # Limit the pass to some DNS zones
  python main.py --once --fail-on-error       # Exit 2 when any domain failed
"""
from __future__ import annotations

import argparse
import logging
import sys

import structlog

log = logging.getLogger(__name__)

EXIT_CONFIG_ERROR = 1
EXIT_DOMAIN_FAILURES = 2


# ── Logging setup ─────────────────────────────────────────────────────────────


def _render_line(logger, method_name, event_dict) -> str:
    """<timestamp> <LEVEL> [<logger>] <message>"""
    line = "{} {} [{}] {}".format(
        event_dict.get("timestamp", ""),
        event_dict.get("level", method_name).upper(),
        event_dict.get("logger", "root"),
        event_dict.get("event", ""),
    )
    exception = event_dict.get("exception")
    if exception:
        line += "\n" + exception
    return line


def configure_logging(level: str = "INFO") -> None:
    """
    Route all stdlib logging through structlog's ProcessorFormatter.

    Every line goes to stdout; ERROR and above are repeated on stderr so
    schedulers that only watch the error stream still see failures.
    """
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S", utc=False),
        ],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            _render_line,
        ],
    )

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(formatter)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.ERROR)
    stderr_handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(stdout_handler)
    root.addHandler(stderr_handler)
    root.setLevel(level.upper())

    # The Azure SDK logs every HTTP request at INFO
    logging.getLogger("azure").setLevel(logging.WARNING)


# ── Runner ────────────────────────────────────────────────────────────────────


def run_once(zones: list[str] | None = None):
    """Execute one full renewal pass and return the BatchReport."""
    from acmekit.client import make_client
    from config import settings
    from providers.azure_auth import make_credential
    from providers.dns import make_dns_provider
    from providers.keyvault import make_secret_store
    from renewal.account import ensure_account
    from renewal.batch import BatchRunner
    from renewal.orchestrator import OrderOrchestrator
    from storage import filesystem as fs

    missing = settings.missing_required()
    if missing:
        log.error("Missing required settings: %s. Set them in .env or the environment.", ", ".join(missing))
        sys.exit(EXIT_CONFIG_ERROR)

    credential = make_credential(
        run_as_service=settings.RUN_AS_SERVICE,
        tenant_id=settings.AZURE_TENANT_ID,
        client_id=settings.AZURE_CLIENT_ID,
        client_secret=settings.AZURE_CLIENT_SECRET,
        max_attempts=settings.LOGIN_MAX_ATTEMPTS,
        retry_delay=settings.LOGIN_RETRY_DELAY_SECONDS,
    )
    dns = make_dns_provider(credential)
    secret_store = make_secret_store(credential)

    account = ensure_account(
        str(fs.account_path(settings.STATE_DIR)),
        contact_email=settings.CONTACT_EMAIL,
        directory_url=settings.ACME_DIRECTORY_URL,
    )
    orchestrator = OrderOrchestrator(
        client=make_client(account),
        dns=dns,
        secret_store=secret_store,
        state_dir=settings.STATE_DIR,
        txt_ttl=settings.TXT_RECORD_TTL,
        validation_interval=settings.VALIDATION_POLL_INTERVAL,
        certificate_interval=settings.CERTIFICATE_POLL_INTERVAL,
        poll_timeout=settings.POLL_TIMEOUT_SECONDS,
    )
    runner = BatchRunner(dns, secret_store, orchestrator, zones=zones or settings.DNS_ZONES)

    log.info("Starting renewal pass (key vault %s, resource group %s)",
             settings.KEY_VAULT_NAME, settings.RESOURCE_GROUP)
    report = runner.run()
    for result in report.results:
        if result.outcome == "failed":
            log.error("%s failed: %s", result.domain, result.reason)
    return report


def run_scheduled(zones: list[str] | None = None) -> None:
    """Run the renewal pass on a daily schedule."""
    import schedule
    import time
    from config import settings

    schedule_time = settings.SCHEDULE_TIME
    log.info("Scheduling daily renewal pass at %s", schedule_time)

    def job() -> None:
        log.info("Scheduled run triggered")
        try:
            run_once(zones=zones)
        except Exception as exc:
            log.exception("Scheduled run failed: %s", exc)

    schedule.every().day.at(schedule_time).do(job)

    log.info("Running initial pass immediately...")
    job()

    log.info("Entering schedule loop — press Ctrl+C to stop")
    while True:
        schedule.run_pending()
        time.sleep(60)


# ── CLI ───────────────────────────────────────────────────────────────────────


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Renew Azure Key Vault certificates over ACME DNS-01",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --once
  python main.py --schedule
  python main.py --once --zones example.com example.org
  python main.py --once --fail-on-error
        """,
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run one renewal pass immediately and exit",
    )
    parser.add_argument(
        "--schedule",
        action="store_true",
        help="Run on the configured daily schedule (SCHEDULE_TIME in .env)",
    )
    parser.add_argument(
        "--zones",
        nargs="+",
        metavar="ZONE",
        help="Only process these DNS zones",
    )
    parser.add_argument(
        "--fail-on-error",
        action="store_true",
        help=f"Exit with status {EXIT_DOMAIN_FAILURES} if any domain failed (--once only)",
    )

    args = parser.parse_args()

    if not args.once and not args.schedule:
        parser.print_help()
        sys.exit(EXIT_CONFIG_ERROR)

    from config import settings
    from providers.azure_auth import AzureLoginError

    configure_logging(settings.LOG_LEVEL)

    try:
        if args.schedule:
            run_scheduled(zones=args.zones)
            return
        report = run_once(zones=args.zones)
    except AzureLoginError as exc:
        log.error("%s", exc)
        sys.exit(EXIT_CONFIG_ERROR)

    if args.fail_on_error and not report.ok:
        sys.exit(EXIT_DOMAIN_FAILURES)


if __name__ == "__main__":
    main()
