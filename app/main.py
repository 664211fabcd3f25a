# =============================================================================
# app/main.py - Command-line Entry Point
# =============================================================================
# Runs dqscope against the database in DATABASE_URL (or --url).
#
# Usage:
#   dqscope discover [--url URL] [--schema public] [--store-metrics]
#   dqscope validate --table public.orders [--url URL] [--no-ai]
#
# Both commands print a JSON document on stdout; logs go to stderr.
# =============================================================================

import argparse
import asyncio
import json
import logging
import sys

from app.config import settings
from app.exceptions import DQScopeException
from app.logging_config import configure_logging
from agents.rule_assistant import AiClientConfig, RuleAssistant
from core.services import (
    DiscoveryRun,
    InMemoryRuleStore,
    RuleLifecycleManager,
    SupabaseMetricsStore,
    detect_quality_alerts,
)
from lib.metadata_reader import SqlAlchemyMetadataReader
from lib.rule_executor import SqlAlchemyDataSource

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dqscope", description="Database profiling and data-quality rules")
    parser.add_argument("--url", help="SQLAlchemy database URL (default: DATABASE_URL)")
    parser.add_argument("--schema", action="append", dest="schemas", help="Schema to read (repeatable)")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")

    commands = parser.add_subparsers(dest="command", required=True)

    discover = commands.add_parser("discover", help="Profile every table and infer relationships")
    discover.add_argument("--concurrency", type=int, help="Columns profiled at once")
    discover.add_argument("--sample-rows", type=int, help="Rows sampled per table")
    discover.add_argument("--store-metrics", action="store_true", help="Append metric facts to Supabase")

    validate = commands.add_parser("validate", help="Suggest and validate rules for one table")
    validate.add_argument("--table", required=True, help="Table full name (schema.table)")
    validate.add_argument("--no-ai", action="store_true", help="Templates only, no AI generation or repair")

    return parser


async def run_discover(args: argparse.Namespace) -> dict:
    reader = SqlAlchemyMetadataReader.from_url(args.url, schemas=args.schemas)
    run = DiscoveryRun(
        reader,
        concurrency=args.concurrency,
        sample_rows=args.sample_rows,
        metrics_store=SupabaseMetricsStore() if args.store_metrics else None,
    )
    report = await run.run()
    return report.model_dump(mode="json")


async def run_validate(args: argparse.Namespace) -> dict:
    reader = SqlAlchemyMetadataReader.from_url(args.url, schemas=args.schemas)
    tables = {t.full_name: t for t in await reader.list_tables()}
    table = tables.get(args.table)
    if table is None:
        raise DQScopeException(
            message=f"Table {args.table} not found",
            code="TABLE_NOT_FOUND",
            suggestion=f"Pick one of: {', '.join(sorted(tables)) or '(none)'}",
        )

    columns = await reader.list_columns(table)
    sample = await reader.sample_rows(table, 10)

    ai_config = None
    if not args.no_ai and settings.OPENAI_API_KEY:
        ai_config = AiClientConfig.from_settings()
    elif not args.no_ai:
        logger.info("OPENAI_API_KEY not set; using templates only")

    manager = RuleLifecycleManager(
        assistant=RuleAssistant() if ai_config else None,
        store=InMemoryRuleStore(),
    )
    candidates = await manager.generate_candidates(table, columns, sample, ai_config)
    outcomes = await manager.validate_many(
        candidates,
        SqlAlchemyDataSource(reader.engine),
        {table.full_name: columns},
        ai_config,
    )
    results = [o.result for o in outcomes if o.result is not None]
    return {
        "table": table.full_name,
        "outcomes": [o.model_dump(mode="json") for o in outcomes],
        "alerts": [a.model_dump(mode="json") for a in detect_quality_alerts(results)],
    }


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(debug=args.debug or None)

    handlers = {"discover": run_discover, "validate": run_validate}
    try:
        output = asyncio.run(handlers[args.command](args))
    except DQScopeException as e:
        logger.error(str(e))
        json.dump(e.to_dict(), sys.stdout, indent=2)
        sys.stdout.write("\n")
        return 1

    json.dump(output, sys.stdout, indent=2, default=str)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
