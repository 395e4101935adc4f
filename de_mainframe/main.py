"""
Command line interface for the DE-MainFrame detection analysis engine.
"""

import json
import sys
from datetime import datetime
from pathlib import Path

import click

from de_mainframe.core.config import ConfigManager, EngineConfig
from de_mainframe.core.exceptions import (
    ConfigurationError,
    DeMainframeException,
    DetectionNotFoundError,
)
from de_mainframe.core.logging import get_logger, setup_logging
from de_mainframe.engine.corpus import CorpusIndexer, DetectionFilter, DetectionSort
from de_mainframe.engine.history import (
    ChangeType,
    build_history,
    filter_history,
    history_type_counts,
)
from de_mainframe.engine.lifecycle import LifecycleClassifier, LifecycleStatus
from de_mainframe.engine.macros import build_macro_catalog, filter_macros
from de_mainframe.engine.revalidation import DEFAULT_USER, batch_mark
from de_mainframe.engine.spl_parser import SplParser
from de_mainframe.loader import load_detections, load_macros, save_detections
from de_mainframe.schemas.detection import DetectionRecord, RevalidationAction, as_utc
from de_mainframe.schemas.macro import MacroSort


logger = get_logger(__name__)

DATE_FORMATS = ["%Y-%m-%d", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M:%S"]
ACTIONS = {"tuned": RevalidationAction.TUNED, "retrofitted": RevalidationAction.RETROFITTED}


class EngineContext:
    """Configured engine components shared by every command."""

    def __init__(self, config: EngineConfig):
        self.config = config
        self.parser = SplParser(config.parsing_rules)
        self.classifier = LifecycleClassifier.from_config(config)
        self.indexer = CorpusIndexer(classifier=self.classifier, parser=self.parser)


detections_option = click.option(
    "--detections",
    "-d",
    "detections_path",
    required=True,
    type=click.Path(exists=True, path_type=Path),
    help="Detection JSON/YAML file or directory of detection files",
)
now_option = click.option(
    "--now",
    type=click.DateTime(formats=DATE_FORMATS),
    default=None,
    help="Evaluation time (UTC), defaults to the current time",
)


def _echo_json(data) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _find(corpus: list[DetectionRecord], name: str) -> DetectionRecord:
    for record in corpus:
        if record.name == name:
            return record
    raise DetectionNotFoundError(f"Detection not found: {name}")


def _run(func, *args, **kwargs):
    """Run a command body, turning boundary errors into click errors."""
    try:
        return func(*args, **kwargs)
    except DetectionNotFoundError as e:
        raise click.UsageError(e.message) from e
    except DeMainframeException as e:
        logger.error("command_failed", error=e.message, error_code=e.error_code)
        raise click.ClickException(e.message) from e


@click.group()
@click.option(
    "--config",
    "config_file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="JSON or YAML configuration file",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx: click.Context, config_file: Path | None, verbose: bool):
    """DE-MainFrame detection analysis engine."""
    setup_logging("DEBUG" if verbose else "WARNING")

    overrides = {"log_level": "DEBUG"} if verbose else {}
    try:
        config = ConfigManager().load_config(config_file, **overrides)
    except ConfigurationError as e:
        raise click.ClickException(e.message) from e

    # Command output goes to stdout; keep stderr quiet unless asked
    level = config.log_level if "log_level" in config.model_fields_set else "WARNING"
    setup_logging(level, config.log_format)
    ctx.obj = EngineContext(config)


@cli.command()
@click.argument("query", required=False)
@click.option(
    "--file",
    "-f",
    "query_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Read the query from a file",
)
@click.pass_obj
def parse(engine: EngineContext, query: str | None, query_file: Path | None):
    """Parse an SPL query and print the referenced resources as JSON."""
    if query_file is not None:
        query = query_file.read_text(encoding="utf-8")
    elif query is None:
        query = sys.stdin.read()

    _echo_json(engine.parser.parse(query).model_dump(mode="json"))


@cli.command()
@detections_option
@now_option
@click.pass_obj
def status(engine: EngineContext, detections_path: Path, now: datetime | None):
    """Print lifecycle status counts for a corpus."""

    def body():
        corpus = load_detections(detections_path)
        counts = engine.indexer.status_counts(corpus, as_utc(now))
        _echo_json({state.value: count for state, count in counts.items()})

    _run(body)


@cli.command()
@click.argument("name")
@detections_option
@now_option
@click.pass_obj
def classify(engine: EngineContext, name: str, detections_path: Path, now: datetime | None):
    """Classify a single detection by name."""

    def body():
        record = _find(load_detections(detections_path), name)
        result = engine.classifier.classify(record, as_utc(now))
        output = result.model_dump(mode="json")
        output["name"] = record.name
        output["ttl_class"] = engine.classifier.ttl_class(result.ttl_days_remaining).value
        _echo_json(output)

    _run(body)


@cli.command()
@detections_option
@click.option(
    "--macros",
    "-m",
    "macros_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Macro list JSON/YAML file",
)
@click.option("--search", "-s", default="", help="Substring of the macro name")
@click.option(
    "--sort",
    "order",
    type=click.Choice([order.value for order in MacroSort]),
    default=MacroSort.NAME_ASC.value,
    show_default=True,
)
@click.option("--include-deprecated", is_flag=True, help="List deprecated macros too")
@click.pass_obj
def macros(
    engine: EngineContext,
    detections_path: Path,
    macros_path: Path,
    search: str,
    order: str,
    include_deprecated: bool,
):
    """List macros with their usage counts."""

    def body():
        corpus = load_detections(detections_path)
        try:
            catalog = build_macro_catalog(load_macros(macros_path), corpus, engine.indexer)
        except ValueError as e:
            raise click.ClickException(str(e)) from e

        listed = filter_macros(catalog, search, order, include_deprecated)
        for macro in listed:
            suffix = " (deprecated)" if macro.deprecated else ""
            click.echo(f"{macro.name}\t{macro.usage_count}{suffix}")
        click.echo(f"\n{len(listed)} of {len(catalog)} macros")

    _run(body)


@cli.command("macro-usage")
@click.argument("macro_name")
@detections_option
@click.pass_obj
def macro_usage(engine: EngineContext, macro_name: str, detections_path: Path):
    """List detections that invoke a macro."""

    def body():
        usages = engine.indexer.detections_using_macro(
            macro_name.strip("`"), load_detections(detections_path)
        )
        for usage in usages:
            click.echo(f"{usage.name}\t{usage.severity}\t{usage.domain}")
        click.echo(f"\n{len(usages)} detections use `{macro_name.strip('`')}`")

    _run(body)


@cli.command("missing-macros")
@detections_option
@click.option(
    "--macros",
    "-m",
    "macros_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Macro list JSON/YAML file; without it every macro is reported",
)
@click.pass_obj
def missing_macros(engine: EngineContext, detections_path: Path, macros_path: Path | None):
    """Report macros referenced by detections but absent from the macro list."""

    def body():
        corpus = load_detections(detections_path)
        loaded: list[str] = []
        if macros_path is not None:
            for entry in load_macros(macros_path):
                loaded.append(entry if isinstance(entry, str) else str(entry.get("name", "")))

        found = 0
        for record in corpus:
            missing = engine.indexer.missing_macros(record.search_string, loaded)
            if missing:
                found += 1
                click.echo(f"{record.name}: {', '.join(missing)}")
        if not found:
            click.echo("✅ No missing macros")

    _run(body)


@cli.command("filter")
@detections_option
@now_option
@click.option("--name", default=None, help="Substring of the detection name")
@click.option("--text", default=None, help="Substring of name, objective, search or MITRE ids")
@click.option("--severity", default=None)
@click.option("--domain", default=None)
@click.option("--origin", default=None)
@click.option("--data-source", default=None)
@click.option("--mitre-id", default=None)
@click.option(
    "--status",
    "status_",
    type=click.Choice([state.value for state in LifecycleStatus]),
    default=None,
)
@click.option("--sourcetype", default=None)
@click.option("--field", "main_search_field", default=None, help="Main search field")
@click.option("--function", "main_search_function", default=None, help="Pipe command")
@click.option("--drilldown-var", default=None, help="Drilldown $variable$ name")
@click.option(
    "--sort",
    "order",
    type=click.Choice([order.value for order in DetectionSort]),
    default=DetectionSort.NAME_ASC.value,
    show_default=True,
)
@click.pass_obj
def filter_command(
    engine: EngineContext,
    detections_path: Path,
    now: datetime | None,
    order: str,
    status_: str | None,
    **criteria,
):
    """Search detections; every given criterion must match."""

    def body():
        corpus = load_detections(detections_path)
        search = DetectionFilter(status=status_, **criteria)
        matches = engine.indexer.filter_detections(corpus, search, as_utc(now))
        for record in engine.indexer.sort_detections(matches, order):
            click.echo(record.name)
        click.echo(f"\n{len(matches)} of {len(corpus)} detections")

    _run(body)


@cli.command()
@click.argument("names", nargs=-1, required=True)
@detections_option
@click.option(
    "--action",
    type=click.Choice(list(ACTIONS)),
    default="tuned",
    show_default=True,
)
@click.option("--user", default=DEFAULT_USER, show_default=True)
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write the updated corpus here instead of over the input file",
)
@click.pass_obj
def mark(
    engine: EngineContext,
    names: tuple,
    detections_path: Path,
    action: str,
    user: str,
    output: Path | None,
):
    """Mark detections as tuned or retrofitted and save the corpus."""

    def body():
        target = output or detections_path
        if target.is_dir():
            raise click.UsageError("Cannot write a corpus over a directory; use --output")

        corpus = load_detections(detections_path)
        marked = batch_mark(corpus, names, ACTIONS[action], user=user)
        if not marked:
            raise DetectionNotFoundError(f"Detection not found: {', '.join(names)}")

        save_detections(target, corpus)
        for record in marked:
            click.echo(f"✅ {record.name}: {ACTIONS[action].value}")
        skipped = len(names) - len(marked)
        if skipped:
            click.echo(f"⚠️  {skipped} unknown detection(s) skipped", err=True)

    _run(body)


@cli.command()
@detections_option
@click.option("--from", "date_from", type=click.DateTime(formats=DATE_FORMATS), default=None)
@click.option("--to", "date_to", type=click.DateTime(formats=DATE_FORMATS), default=None)
@click.option(
    "--type",
    "change_types",
    type=click.Choice([change.value for change in ChangeType]),
    multiple=True,
    help="Change types to show (can be specified multiple times)",
)
@click.option("--name", default=None, help="Substring of the detection name")
@click.pass_obj
def history(
    engine: EngineContext,
    detections_path: Path,
    date_from: datetime | None,
    date_to: datetime | None,
    change_types: tuple,
    name: str | None,
):
    """Print the change timeline of a corpus, newest first."""

    def body():
        entries = filter_history(
            build_history(load_detections(detections_path)),
            date_from=_day_bound(date_from),
            date_to=_day_bound(date_to),
            change_types=change_types or None,
            name=name,
        )
        for entry in entries:
            click.echo(
                f"{entry.date.isoformat()}\t{entry.type.value}\t{entry.detection_name}\t{entry.analyst}"
            )
        counts = history_type_counts(entries)
        click.echo("\n" + ", ".join(f"{change.value}: {count}" for change, count in counts.items()))

    _run(body)


def _day_bound(value: datetime | None):
    # Date-only input covers the whole day
    if value is None:
        return None
    if value.hour == value.minute == value.second == 0:
        return value.date()
    return as_utc(value)


if __name__ == "__main__":
    cli()
