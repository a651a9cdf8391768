"""Typer CLI for the vacation suggester."""

from __future__ import annotations

import contextlib
import datetime
import json
import logging
import pathlib
import sys

import typer

from ferias.config import Settings
from ferias.holidays import PRESETS, Holiday, get_holidays
from ferias.sources import (
    CachedHolidaySource,
    CombinedHolidaySource,
    HolidaySource,
    PresetHolidaySource,
    StaticHolidaySource,
    SupabaseHolidaySource,
)
from ferias.storage import JsonFileStore
from ferias.suggestions import (
    DEFAULT_CONFIG,
    SuggestionConfig,
    VacationSuggester,
    VacationSuggestion,
    format_calendar_view,
    format_suggestions,
    load_suggestion_config,
    suggestion_to_dict,
)

app = typer.Typer(
    name="ferias",
    help="Vacation suggester: proposes vacation windows next to holiday "
    "clusters so your days off stretch further.",
    add_completion=False,
)

SOURCE_CHOICES = ["preset", "supabase", "none"]


def _parse_date(value: str) -> datetime.date:
    """Parse a YYYY-MM-DD date string."""
    try:
        return datetime.date.fromisoformat(value)
    except ValueError:
        raise typer.BadParameter(f"Invalid date format {value!r}. Use YYYY-MM-DD.") from None


def _parse_holiday(value: str) -> Holiday:
    """Parse ``YYYY-MM-DD`` or ``YYYY-MM-DD:Label``."""
    date_part, _, label = value.partition(":")
    return Holiday(_parse_date(date_part.strip()), label.strip() or "Feriado", "custom")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _load_config(path: str) -> SuggestionConfig:
    """Load scoring overrides from a JSON file."""
    p = pathlib.Path(path)
    if not p.exists():
        typer.echo(f"Error: Config file not found: {path}", err=True)
        raise typer.Exit(code=1)

    try:
        data = json.loads(p.read_text())
    except json.JSONDecodeError as exc:
        typer.echo(f"Error: Invalid JSON in config file: {exc}", err=True)
        raise typer.Exit(code=1) from None

    if not isinstance(data, dict):
        typer.echo("Error: Config file must contain a JSON object.", err=True)
        raise typer.Exit(code=1)

    try:
        return load_suggestion_config(data)
    except ValueError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def _build_source(
    source: str,
    country: str,
    extra: list[Holiday],
    settings: Settings,
    stack: contextlib.ExitStack,
) -> HolidaySource:
    """Build the holiday source selected on the command line."""
    primary: HolidaySource
    if source == "preset":
        try:
            primary = PresetHolidaySource(country)
        except KeyError as exc:
            typer.echo(f"Error: {exc}", err=True)
            raise typer.Exit(code=1) from None
    elif source == "supabase":
        if not settings.supabase_configured:
            typer.echo(
                "Error: FERIAS_SUPABASE_URL and FERIAS_SUPABASE_KEY must be set "
                "to use the supabase source.",
                err=True,
            )
            raise typer.Exit(code=1)
        primary = stack.enter_context(
            SupabaseHolidaySource(
                settings.supabase_url,
                settings.supabase_key,
                settings.holiday_table,
                timeout=settings.fetch_timeout,
                retries=settings.fetch_retries,
            )
        )
        if settings.cache_file:
            primary = CachedHolidaySource(
                primary, JsonFileStore(settings.cache_file), settings.holiday_cache_ttl
            )
    else:
        primary = StaticHolidaySource([])

    if extra:
        return CombinedHolidaySource(StaticHolidaySource(extra), primary)
    return primary


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def suggest(
    year: int = typer.Option(
        None,
        "--year",
        "-y",
        help="Target year. Defaults to the current year.",
    ),
    today: str | None = typer.Option(
        None,
        "--today",
        help="Reference date (YYYY-MM-DD); holidays before it are ignored.",
    ),
    source: str = typer.Option(
        "preset",
        "--source",
        "-s",
        help="Holiday source: preset, supabase, none.",
    ),
    country: str = typer.Option(
        "br",
        "--country",
        "-c",
        help=f"Holiday preset ({', '.join(sorted(PRESETS))}) for --source preset.",
    ),
    holiday: list[str] | None = typer.Option(  # noqa: B008
        None,
        "--holiday",
        "-H",
        help="Additional holiday, YYYY-MM-DD or YYYY-MM-DD:Label. Repeatable.",
    ),
    config: str | None = typer.Option(
        None,
        "--config",
        help="Path to a JSON file overriding scoring constants.",
    ),
    calendar: bool = typer.Option(
        True,
        "--calendar/--no-calendar",
        help="Show month-by-month calendar view.",
    ),
    output_json: bool = typer.Option(
        False,
        "--json",
        help="Output results as JSON.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Log debug details to stderr.",
    ),
) -> None:
    """Suggest vacation windows for a year."""
    _configure_logging(verbose)

    if source not in SOURCE_CHOICES:
        typer.echo(
            f"Error: Invalid source {source!r}. Choose from: {', '.join(SOURCE_CHOICES)}",
            err=True,
        )
        raise typer.Exit(code=1)

    reference = _parse_date(today) if today else datetime.date.today()
    resolved_year = year if year is not None else reference.year
    scoring = _load_config(config) if config is not None else DEFAULT_CONFIG
    extra = [_parse_holiday(h) for h in holiday or []]

    settings = Settings()
    with contextlib.ExitStack() as stack:
        holiday_source = _build_source(source, country, extra, settings, stack)
        suggester = VacationSuggester(
            holiday_source,
            scoring,
            timeout=settings.fetch_timeout,
            ttl=settings.suggestion_ttl,
            today=lambda: reference,
        )
        suggestions = suggester.suggest(resolved_year)
        holidays = suggester.holidays(resolved_year)

    if output_json:
        _print_json(suggestions, holidays, resolved_year, source)
    else:
        _print_text(suggestions, holidays, resolved_year, source, calendar)


def _print_text(
    suggestions: list[VacationSuggestion],
    holidays: list[Holiday],
    year: int,
    source: str,
    show_calendar: bool,
) -> None:
    w = 64
    typer.echo("=" * w)
    typer.echo("  VACATION SUGGESTIONS")
    typer.echo("=" * w)
    typer.echo(f"  Year:      {year}")
    typer.echo(f"  Source:    {source}")
    typer.echo(f"  Holidays:  {len(holidays)}")
    typer.echo()
    for h in holidays:
        typer.echo(f"    {h.date.strftime('%a, %b %d'):>12}  {h.label}")

    typer.echo(format_suggestions(suggestions))
    if show_calendar:
        typer.echo(format_calendar_view(suggestions, holidays, year))

    typer.echo()
    typer.echo("=" * w)
    n = len(suggestions)
    typer.echo(f"  Generated {n} vacation suggestion{'s' if n != 1 else ''}.")
    typer.echo("=" * w)


def _print_json(
    suggestions: list[VacationSuggestion],
    holidays: list[Holiday],
    year: int,
    source: str,
) -> None:
    output = {
        "year": year,
        "source": source,
        "holidays": [
            {"date": h.date.isoformat(), "label": h.label, "kind": h.kind} for h in holidays
        ],
        "suggestions": [suggestion_to_dict(s) for s in suggestions],
    }
    json.dump(output, sys.stdout, indent=2, ensure_ascii=False)
    typer.echo()


@app.command()
def holidays(
    country: str = typer.Option(
        "br",
        "--country",
        "-c",
        help=f"Country preset ({', '.join(sorted(PRESETS))}).",
    ),
    year: int = typer.Option(
        None,
        "--year",
        "-y",
        help="Year to list holidays for. Defaults to the current year.",
    ),
) -> None:
    """List holidays for a country preset."""
    resolved_year = year if year is not None else datetime.date.today().year

    try:
        preset = get_holidays(country, resolved_year)
    except KeyError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None

    typer.echo(f"  {PRESETS[country]} ({resolved_year})")
    typer.echo()
    for h in preset:
        suffix = "" if h.kind == "nacional" else f"  ({h.kind})"
        typer.echo(f"    {h.date.strftime('%a, %b %d'):>12}  {h.label}{suffix}")


def main() -> None:
    """Entry point for the CLI."""
    app()
