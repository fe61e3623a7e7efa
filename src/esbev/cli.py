"""Command line interface for the esports total-goals EV pipeline."""

from __future__ import annotations

import argparse
import dataclasses
import datetime as dt
import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, Sequence

from .alerts import AlertManager, build_alert_manager
from .config import get_settings
from .configuration import (
    ConfigurationError,
    PipelineConfig,
    load_pipeline_config,
    validate_pipeline_config,
)
from .errors import PassReport
from .feeds import load_raw_batches
from .logging import configure_logging
from .pipeline import Pipeline
from .reports import WagerFilter, formula_summary, odds_range_summary, stats_frame
from .storage import SQLiteStore
from .utils import parse_timestamp

logger = logging.getLogger(__name__)


@dataclasses.dataclass(slots=True)
class CommandContext:
    """Runtime objects shared across command handlers."""

    pipeline: Pipeline
    store: SQLiteStore
    alert_manager: AlertManager | None
    config: PipelineConfig


CommandHandler = Callable[..., None]


@dataclasses.dataclass(slots=True)
class Subcommand:
    """Container describing a CLI sub-command."""

    name: str
    help: str
    configure: Callable[[argparse.ArgumentParser], None]
    handler: CommandHandler
    requires_store: bool

    def add_to_parser(
        self,
        subparsers,
        parent: argparse.ArgumentParser,
    ) -> argparse.ArgumentParser:
        """Create the parser for this subcommand."""

        parser = subparsers.add_parser(self.name, parents=[parent], help=self.help)
        self.configure(parser)
        parser.set_defaults(
            handler=self.handler,
            command=self.name,
            requires_store=self.requires_store,
        )
        return parser


class SubcommandApp:
    """Registry that wires handlers into an :class:`argparse` parser."""

    def __init__(self, description: str | None = None) -> None:
        self._commands: list[Subcommand] = []
        self._description = description

    def command(
        self,
        name: str,
        *,
        help: str,
        configure: Callable[[argparse.ArgumentParser], None],
        requires_store: bool = True,
    ) -> Callable[[CommandHandler], CommandHandler]:
        """Register ``handler`` as a sub-command with configuration callback."""

        def _decorator(handler: CommandHandler) -> CommandHandler:
            self._commands.append(
                Subcommand(
                    name=name,
                    help=help,
                    configure=configure,
                    handler=handler,
                    requires_store=requires_store,
                )
            )
            return handler

        return _decorator

    def build_parser(self) -> argparse.ArgumentParser:
        parent = argparse.ArgumentParser(add_help=False)
        parent.add_argument("--config", dest="config_file")
        parent.add_argument("--environment", dest="config_environment")
        parent.add_argument("--storage")
        parent.add_argument("--log-level")

        parser = argparse.ArgumentParser(description=self._description)
        subparsers = parser.add_subparsers(dest="command", required=True)
        for command in self._commands:
            command.add_to_parser(subparsers, parent)
        return parser


APP = SubcommandApp(description=__doc__)


def _print_report(report: PassReport) -> None:
    print(json.dumps(report.as_dict(), indent=2, sort_keys=True))


def _read_json(path: Path) -> Any:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def _parse_now(value: str | None) -> dt.datetime | None:
    if value is None:
        return None
    parsed = parse_timestamp(value)
    if parsed is None:
        raise SystemExit(f"Unparsable timestamp: {value}")
    return parsed


def _configure_validate_parser(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--warnings-as-errors",
        action="store_true",
        help="Fail validation when configuration warnings are encountered.",
    )


def _configure_normalize_parser(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("raw_dir", type=Path, help="Directory of raw match JSON files")
    parser.add_argument("--pattern", default="*.json")


def _configure_aggregate_parser(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--now", help="Reference time for the stats snapshot")


def _configure_ev_parser(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--fixtures", type=Path, help="Sportsbook event listing JSON")
    parser.add_argument(
        "--odds",
        type=Path,
        help="Directory of <event id>.json bet offer payloads",
    )
    parser.add_argument("--now", help="Evaluate fixtures relative to this time")


def _configure_settle_parser(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--event-id")
    parser.add_argument("--tolerance", type=float, help="Kickoff tolerance in minutes")
    parser.add_argument("--now", help="Settlement timestamp")


def _configure_report_parser(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--formula", action="append", dest="formulas")
    parser.add_argument("--scope", action="append", dest="scopes")
    parser.add_argument("--selection", action="append", dest="selections", choices=["over", "under"])
    parser.add_argument("--min-ev", type=float)
    parser.add_argument("--max-ev", type=float)
    parser.add_argument("--min-odds", type=float)
    parser.add_argument("--max-odds", type=float)
    parser.add_argument("--from", dest="kickoff_from")
    parser.add_argument("--to", dest="kickoff_to")
    parser.add_argument(
        "--kind",
        choices=["formulas", "odds-ranges", "stats"],
        default="formulas",
    )


@APP.command(
    "validate-config",
    help="Validate pipeline configuration",
    configure=_configure_validate_parser,
    requires_store=False,
)
def _cmd_validate_config(config: PipelineConfig, args: argparse.Namespace) -> None:
    try:
        warnings = validate_pipeline_config(config)
    except ConfigurationError as exc:
        print("Configuration invalid:")
        for line in str(exc).splitlines():
            text = line if line.startswith("-") else f"- {line}"
            print(text)
        raise SystemExit(1) from exc

    print(f"Configuration '{config.environment}' is valid.")
    if warnings:
        print("Warnings:")
        for message in warnings:
            print(f"- {message}")
        if getattr(args, "warnings_as_errors", False):
            raise SystemExit(2)


@APP.command(
    "normalize",
    help="Normalise raw match files into canonical matches",
    configure=_configure_normalize_parser,
)
def _cmd_normalize(context: CommandContext, args: argparse.Namespace) -> None:
    batches = load_raw_batches(args.raw_dir, args.pattern)
    _print_report(context.pipeline.normalize_pass(batches))


@APP.command(
    "aggregate",
    help="Rebuild player window statistics",
    configure=_configure_aggregate_parser,
)
def _cmd_aggregate(context: CommandContext, args: argparse.Namespace) -> None:
    _print_report(context.pipeline.aggregate_pass(now=_parse_now(args.now)))


@APP.command(
    "ev",
    help="Evaluate upcoming fixtures against stored statistics",
    configure=_configure_ev_parser,
)
def _cmd_ev(context: CommandContext, args: argparse.Namespace) -> None:
    pipeline = context.pipeline
    now = _parse_now(args.now)
    if args.fixtures is not None:
        pipeline.record_fixtures(_read_json(args.fixtures), created_at=now)
    if args.odds is not None:
        for path in sorted(args.odds.glob("*.json")):
            try:
                payload = _read_json(path)
            except (OSError, json.JSONDecodeError) as exc:
                logger.warning("Skipping odds file %s: %s", path, exc)
                continue
            pipeline.record_odds(path.stem, payload, observed_at=now)
    _print_report(pipeline.ev_pass(now=now))


@APP.command(
    "settle",
    help="Settle pending wagers against canonical matches",
    configure=_configure_settle_parser,
)
def _cmd_settle(context: CommandContext, args: argparse.Namespace) -> None:
    report = context.pipeline.settle_pass(
        args.event_id,
        tolerance_minutes=args.tolerance,
        now=_parse_now(args.now),
    )
    _print_report(report)


@APP.command(
    "report",
    help="Summarise stored wagers or player statistics",
    configure=_configure_report_parser,
)
def _cmd_report(context: CommandContext, args: argparse.Namespace) -> None:
    store = context.store
    if args.kind == "stats":
        frame = stats_frame(store.load_player_stats())
        print(json.dumps(frame.to_dicts(), indent=2, default=str))
        return
    filters = WagerFilter(
        formulas=args.formulas,
        scopes=args.scopes,
        selections=args.selections,
        min_ev=args.min_ev,
        max_ev=args.max_ev,
        min_odds=args.min_odds,
        max_odds=args.max_odds,
        kickoff_from=_parse_now(args.kickoff_from),
        kickoff_to=_parse_now(args.kickoff_to),
    )
    if args.kind == "odds-ranges":
        frame = odds_range_summary(store.load_wagers(), filters=filters)
        print(json.dumps(frame.to_dicts(), indent=2, default=str))
        return
    summary = formula_summary(store.load_wagers(settled=True), filters)
    payload: Dict[str, Any] = {
        "by_scope": summary.by_scope.to_dicts(),
        "by_formula": summary.by_formula.to_dicts(),
    }
    print(json.dumps(payload, indent=2, default=str))


def _build_parser() -> argparse.ArgumentParser:
    return APP.build_parser()


def _dispatch(args: argparse.Namespace) -> None:
    settings = get_settings()
    configure_logging(args.log_level or settings.log_level)
    config = load_pipeline_config(
        base_path=args.config_file,
        environment=args.config_environment,
    )
    handler: CommandHandler = args.handler
    if not getattr(args, "requires_store", True):
        handler(config, args)
        return

    try:
        warnings = validate_pipeline_config(config)
    except ConfigurationError as exc:
        raise SystemExit(str(exc)) from exc

    if warnings:
        for message in warnings:
            print(f"[config-warning] {message}")

    storage_path = Path(args.storage) if args.storage else settings.database_path
    storage_path.parent.mkdir(parents=True, exist_ok=True)
    alert_manager = build_alert_manager(
        config.alerts,
        telegram_token=settings.telegram_token,
        telegram_chat_id=settings.telegram_chat_id,
    )
    with SQLiteStore(storage_path) as store:
        pipeline = Pipeline(store, config, alert_manager=alert_manager)
        context = CommandContext(
            pipeline=pipeline,
            store=store,
            alert_manager=alert_manager,
            config=config,
        )
        handler(context, args)


def main(argv: Sequence[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)
    _dispatch(args)


__all__ = ["main"]


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    main()
