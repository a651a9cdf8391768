"""Vacation Suggestion Engine

Proposes vacation windows that sit right next to clusters of holidays, so
the days off the court calendar already grants stretch a vacation further.

Pipeline:
  1. Grouper     - holidays at most ``group_gap_days`` apart form one group
  2. Proposer    - a window *before* and a window *after* every group,
                   never starting or ending on a weekend
  3. Scorer      - heuristic 0..100 desirability per window
  4. Fixed picks - early January, mid May and the year-end break
  5. Aggregator  - validate, rank by score, de-duplicate, keep the best six

Generation never raises: any failure degrades to two fixed fallback
suggestions so there is always something to show.
"""

from __future__ import annotations

import calendar
import datetime
import enum
import logging
import time
from collections.abc import Callable, Iterable, Mapping
from typing import Any, NamedTuple, TypeGuard

from ferias.holidays import Holiday
from ferias.sources import HolidaySource, HolidaySourceError, fetch_with_deadline

log = logging.getLogger(__name__)

ONE_DAY = datetime.timedelta(days=1)

# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------


class Period(str, enum.Enum):
    """Season a suggestion belongs to."""

    FIRST_SEMESTER = "primeiro-semestre"
    SECOND_SEMESTER = "segundo-semestre"
    YEAR_END = "virada-ano"
    CARNIVAL = "carnaval"
    MID_YEAR = "junho-julho"
    CUSTOM = "custom"


class VacationSuggestion(NamedTuple):
    """A proposed vacation window."""

    id: str
    start_date: datetime.date
    end_date: datetime.date
    total_days: int
    work_days: int
    score: int
    reason: str
    holidays: list[str]
    benefits: list[str]
    period: Period


class SuggestionConfig(NamedTuple):
    """Tunable constants of the heuristic.

    The scoring weights are hand-picked; nothing calibrates them.
    """

    # Scoring
    base_score: int = 50
    holiday_points: int = 15
    after_bonus: int = 10
    dec_jan_bonus: int = 20
    jun_aug_bonus: int = 15
    mar_may_bonus: int = 10
    february_penalty: int = 5
    max_score: int = 100

    # Windows
    group_gap_days: int = 10
    before_window_days: int = 10
    after_work_days: int = 7
    max_suggestions: int = 6

    # Fixed suggestions
    strategic_january_score: int = 75
    strategic_may_score: int = 70
    year_end_score: int = 90
    fallback_january_score: int = 60
    fallback_may_score: int = 55


DEFAULT_CONFIG = SuggestionConfig()


def load_suggestion_config(data: Mapping[str, Any]) -> SuggestionConfig:
    """Build a :class:`SuggestionConfig` from a mapping of overrides.

    Raises ``ValueError`` for unknown keys or non-integer values.
    """
    unknown = sorted(set(data) - set(SuggestionConfig._fields))
    if unknown:
        raise ValueError(f"Unknown config key(s): {', '.join(unknown)}")
    overrides: dict[str, int] = {}
    for key, value in data.items():
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"Config key {key!r} must be an integer, got {value!r}")
        overrides[key] = value
    config = DEFAULT_CONFIG._replace(**overrides)
    for field in SuggestionConfig._fields:
        if field.endswith("_score") and not 0 <= getattr(config, field) <= 100:
            raise ValueError(f"{field} must be between 0 and 100")
    if config.group_gap_days < 0:
        raise ValueError("group_gap_days must be >= 0")
    if config.before_window_days < 1 or config.after_work_days < 1:
        raise ValueError("window sizes must be >= 1")
    if config.max_suggestions < 1:
        raise ValueError("max_suggestions must be >= 1")
    return config


# ---------------------------------------------------------------------------
# Calendar helpers
# ---------------------------------------------------------------------------


def is_weekend(d: datetime.date) -> bool:
    """True for Saturday and Sunday."""
    return d.weekday() >= 5


def previous_weekday(d: datetime.date) -> datetime.date:
    """Move *d* back onto the closest weekday (Sat/Sun -> Friday)."""
    while is_weekend(d):
        d -= ONE_DAY
    return d


def next_weekday(d: datetime.date) -> datetime.date:
    """Move *d* forward onto the closest weekday (Sat/Sun -> Monday)."""
    while is_weekend(d):
        d += ONE_DAY
    return d


def add_work_days(start: datetime.date, count: int) -> datetime.date:
    """Return the date on which *count* weekdays, *start* included, have elapsed."""
    if count < 1:
        raise ValueError("count must be >= 1")
    d = start
    seen = 0
    while True:
        if not is_weekend(d):
            seen += 1
            if seen == count:
                return d
        d += ONE_DAY


def count_work_days(start: datetime.date, end: datetime.date) -> int:
    """Number of weekdays in ``[start, end]``."""
    days = (end - start).days + 1
    if days <= 0:
        return 0
    full_weeks, rest = divmod(days, 7)
    count = full_weeks * 5
    first = start.weekday()
    for offset in range(rest):
        if (first + offset) % 7 < 5:
            count += 1
    return count


def period_for(d: datetime.date) -> Period:
    """Semester of *d*."""
    return Period.FIRST_SEMESTER if d.month <= 6 else Period.SECOND_SEMESTER


def _window(
    suggestion_id: str,
    start: datetime.date,
    end: datetime.date,
    score: int,
    reason: str,
    holidays: list[str],
    benefits: list[str],
    period: Period,
) -> VacationSuggestion:
    return VacationSuggestion(
        id=suggestion_id,
        start_date=start,
        end_date=end,
        total_days=(end - start).days + 1,
        work_days=count_work_days(start, end),
        score=score,
        reason=reason,
        holidays=holidays,
        benefits=benefits,
        period=period,
    )


# ---------------------------------------------------------------------------
# Grouper, proposer, scorer
# ---------------------------------------------------------------------------


def group_holidays(holidays: Iterable[Holiday], gap_days: int = 10) -> list[list[Holiday]]:
    """Cluster chronologically sorted holidays.

    A new group starts whenever a holiday is more than *gap_days* after the
    previous one.
    """
    groups: list[list[Holiday]] = []
    current: list[Holiday] = []
    for holiday in holidays:
        if current and (holiday.date - current[-1].date).days > gap_days:
            groups.append(current)
            current = []
        current.append(holiday)
    if current:
        groups.append(current)
    return groups


def score_window(
    start: datetime.date,
    holiday_count: int,
    position: str,
    config: SuggestionConfig = DEFAULT_CONFIG,
) -> int:
    """Heuristic desirability of a window starting on *start*, in ``[0, max_score]``."""
    score = config.base_score + config.holiday_points * holiday_count
    if position == "after":
        score += config.after_bonus

    month = start.month
    if month in (12, 1):
        score += config.dec_jan_bonus
    elif 6 <= month <= 8:
        score += config.jun_aug_bonus
    elif 3 <= month <= 5:
        score += config.mar_may_bonus
    elif month == 2:
        score -= config.february_penalty

    return max(0, min(config.max_score, score))


def propose_windows(
    group: list[Holiday],
    year: int,
    index: int,
    config: SuggestionConfig = DEFAULT_CONFIG,
) -> list[VacationSuggestion]:
    """Return the *before* and *after* windows of one holiday group.

    Windows that do not start in *year* are dropped.
    """
    if not group:
        return []

    first = group[0].date
    last = group[-1].date
    labels = [h.label for h in group]
    joined = ", ".join(labels)
    suggestions: list[VacationSuggestion] = []

    before_end = previous_weekday(first - ONE_DAY)
    before_start = previous_weekday(
        before_end - datetime.timedelta(days=config.before_window_days - 1)
    )
    if before_start.year == year:
        suggestions.append(
            _window(
                f"before-{index}",
                before_start,
                before_end,
                score_window(before_start, len(group), "before", config),
                f"Bridge into {joined}",
                labels,
                [
                    "Extended rest period",
                    "Makes the most of consecutive holidays",
                    "Lower travel costs",
                ],
                period_for(first),
            )
        )

    after_start = next_weekday(last + ONE_DAY)
    after_end = previous_weekday(add_work_days(after_start, config.after_work_days))
    if after_start.year == year:
        suggestions.append(
            _window(
                f"after-{index}",
                after_start,
                after_end,
                score_window(after_start, len(group), "after", config),
                f"Extend after {joined}",
                labels,
                [
                    "Full use of the holidays",
                    "Back to work well rested",
                    "Avoids the return rush",
                ],
                period_for(last),
            )
        )

    log.debug("Group %d (%s): %d window(s)", index, joined, len(suggestions))
    return suggestions


# ---------------------------------------------------------------------------
# Fixed suggestions
# ---------------------------------------------------------------------------


def strategic_suggestions(
    year: int, config: SuggestionConfig = DEFAULT_CONFIG
) -> list[VacationSuggestion]:
    """Quiet-season windows that do not depend on holidays."""
    return [
        _window(
            "strategic-january",
            datetime.date(year, 1, 8),
            datetime.date(year, 1, 17),
            config.strategic_january_score,
            "Quiet start of the year with low prices",
            [],
            ["Empty destinations after the festivities", "Promotional prices", "Summer weather"],
            Period.FIRST_SEMESTER,
        ),
        _window(
            "strategic-may",
            datetime.date(year, 5, 6),
            datetime.date(year, 5, 15),
            config.strategic_may_score,
            "Pleasant autumn weather",
            [],
            ["Ideal sightseeing weather", "Low season", "Nature in transition"],
            Period.FIRST_SEMESTER,
        ),
    ]


def year_end_suggestions(
    holidays: Iterable[Holiday],
    year: int,
    config: SuggestionConfig = DEFAULT_CONFIG,
) -> list[VacationSuggestion]:
    """The long break from December 20 to January 10 of the following year."""
    start = datetime.date(year, 12, 20)
    end = datetime.date(year + 1, 1, 10)
    return [
        _window(
            "year-end-extended",
            start,
            end,
            config.year_end_score,
            "Extended year-end break for maximum rest",
            [h.label for h in holidays if start <= h.date <= end],
            [
                "A full renewal period",
                "Covers every festivity",
                "Perfect time for long trips",
            ],
            Period.YEAR_END,
        )
    ]


def fallback_suggestions(
    year: int, config: SuggestionConfig = DEFAULT_CONFIG
) -> list[VacationSuggestion]:
    """Suggestions served when no holiday data is available."""
    return [
        _window(
            "basic-january",
            datetime.date(year, 1, 8),
            datetime.date(year, 1, 17),
            config.fallback_january_score,
            "Quiet start of the year",
            [],
            ["Low prices", "Less crowded destinations"],
            Period.FIRST_SEMESTER,
        ),
        _window(
            "basic-may",
            datetime.date(year, 5, 6),
            datetime.date(year, 5, 15),
            config.fallback_may_score,
            "Pleasant autumn",
            [],
            ["Mild weather", "Low season"],
            Period.FIRST_SEMESTER,
        ),
    ]


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


def is_valid_suggestion(s: object) -> TypeGuard[VacationSuggestion]:
    """Check that *s* is a well-formed suggestion with a score in 0..100."""
    if not isinstance(s, VacationSuggestion):
        return False
    return (
        bool(s.id)
        and isinstance(s.start_date, datetime.date)
        and isinstance(s.end_date, datetime.date)
        and s.start_date <= s.end_date
        and 0 <= s.work_days <= s.total_days
        and 0 <= s.score <= 100
    )


def rank_suggestions(suggestions: Iterable[object], limit: int = 6) -> list[VacationSuggestion]:
    """Drop invalid entries, sort by score and keep the best *limit*.

    The sort is stable, so equal scores keep generation order.  Windows
    covering the same dates as a better-ranked one are dropped.
    """
    valid = [s for s in suggestions if is_valid_suggestion(s)]
    valid.sort(key=lambda s: -s.score)

    ranked: list[VacationSuggestion] = []
    seen: set[tuple[datetime.date, datetime.date]] = set()
    for s in valid:
        span = (s.start_date, s.end_date)
        if span in seen:
            continue
        seen.add(span)
        ranked.append(s)
    return ranked[:limit]


def generate_suggestions(
    holidays: Iterable[Holiday],
    year: int,
    config: SuggestionConfig = DEFAULT_CONFIG,
    today: datetime.date | None = None,
) -> list[VacationSuggestion]:
    """Generate up to ``config.max_suggestions`` ranked suggestions for *year*.

    Only holidays of *year* falling on or after *today* are considered.
    Never raises.
    """
    try:
        if today is None:
            today = datetime.date.today()
        upcoming = sorted(h for h in holidays if h.date.year == year and h.date >= today)
        if not upcoming:
            return fallback_suggestions(year, config)

        suggestions: list[VacationSuggestion] = []
        for index, group in enumerate(group_holidays(upcoming, config.group_gap_days)):
            try:
                suggestions.extend(propose_windows(group, year, index, config))
            except Exception:
                log.exception("Skipping holiday group %d", index)

        fixed: list[tuple[str, Callable[[], list[VacationSuggestion]]]] = [
            ("strategic", lambda: strategic_suggestions(year, config)),
            ("year-end", lambda: year_end_suggestions(upcoming, year, config)),
        ]
        for name, propose in fixed:
            try:
                suggestions.extend(propose())
            except Exception:
                log.exception("Skipping %s suggestions", name)

        return rank_suggestions(suggestions, config.max_suggestions)
    except Exception:
        log.exception("Suggestion generation failed for %s, using fallback", year)
        return fallback_suggestions(year, config)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class VacationSuggester:
    """Fetches holidays and serves suggestions, cached per year.

    Holiday fetch failures degrade to :func:`fallback_suggestions`; those
    degraded results are not cached so the next call tries again.
    """

    def __init__(
        self,
        source: HolidaySource,
        config: SuggestionConfig = DEFAULT_CONFIG,
        *,
        timeout: float = 10.0,
        ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
        today: Callable[[], datetime.date] = datetime.date.today,
    ):
        self.source = source
        self.config = config
        self.timeout = timeout
        self.ttl = ttl
        self._clock = clock
        self._today = today
        self._cache: dict[int, tuple[float, list[Holiday], list[VacationSuggestion]]] = {}

    def fetch_holidays(self, year: int) -> list[Holiday]:
        """Holidays of *year*; raises :class:`HolidaySourceError`."""
        return fetch_with_deadline(
            self.source,
            datetime.date(year, 1, 1),
            datetime.date(year, 12, 31),
            self.timeout,
        )

    def _fresh(self, year: int) -> tuple[float, list[Holiday], list[VacationSuggestion]] | None:
        hit = self._cache.get(year)
        if hit is not None and self._clock() - hit[0] < self.ttl:
            return hit
        return None

    def suggest(self, year: int | None = None) -> list[VacationSuggestion]:
        if year is None:
            year = self._today().year

        hit = self._fresh(year)
        if hit is not None:
            return list(hit[2])

        try:
            holidays = self.fetch_holidays(year)
        except HolidaySourceError as exc:
            log.warning("Holiday fetch failed for %d, serving fallback: %s", year, exc)
            return fallback_suggestions(year, self.config)

        suggestions = generate_suggestions(holidays, year, self.config, today=self._today())
        self._cache[year] = (self._clock(), holidays, suggestions)
        return list(suggestions)

    def holidays(self, year: int) -> list[Holiday]:
        """Holidays behind the cached suggestions of *year* (empty if none)."""
        hit = self._fresh(year)
        return list(hit[1]) if hit is not None else []

    def invalidate(self, year: int | None = None) -> None:
        if year is None:
            self._cache.clear()
        else:
            self._cache.pop(year, None)


# ---------------------------------------------------------------------------
# Output formatting
# ---------------------------------------------------------------------------


def suggestion_to_dict(s: VacationSuggestion) -> dict[str, object]:
    return {
        "id": s.id,
        "start_date": s.start_date.isoformat(),
        "end_date": s.end_date.isoformat(),
        "total_days": s.total_days,
        "work_days": s.work_days,
        "score": s.score,
        "reason": s.reason,
        "holidays": list(s.holidays),
        "benefits": list(s.benefits),
        "period": s.period.value,
    }


def format_suggestions(suggestions: list[VacationSuggestion]) -> str:
    """Return a human-readable list of suggestions."""
    lines: list[str] = []
    w = 64

    lines.append("")
    lines.append("  Suggested vacation windows:")
    lines.append("  " + "-" * (w - 4))

    if not suggestions:
        lines.append("  (no suggestions)")
        return "\n".join(lines)

    for i, s in enumerate(suggestions, 1):
        dr = f"{s.start_date.strftime('%a, %b %d %Y')} -> {s.end_date.strftime('%a, %b %d %Y')}"
        lines.append(f"  {i:>2}. {dr}  (score {s.score})")
        lines.append(
            f"      {s.total_days} days, {s.work_days} work day{'s' if s.work_days != 1 else ''}"
            f"  [{s.period.value}]"
        )
        lines.append(f"      {s.reason}")
        if s.holidays:
            lines.append(f"      Holidays: {', '.join(s.holidays)}")
        for benefit in s.benefits:
            lines.append(f"        + {benefit}")
        lines.append("")

    return "\n".join(lines)


def format_calendar_view(
    suggestions: list[VacationSuggestion],
    holidays: Iterable[Holiday],
    year: int,
) -> str:
    """Return a month-by-month calendar marking suggested days and holidays."""
    holiday_set = {h.date for h in holidays if h.date.year == year}
    vacation_set: set[datetime.date] = set()
    for s in suggestions:
        d = s.start_date
        while d <= s.end_date:
            if d.year == year:
                vacation_set.add(d)
            d += ONE_DAY

    active_months = {d.month for d in vacation_set | holiday_set}
    if not active_months:
        return ""

    lines: list[str] = [
        "",
        f"  Calendar View {year}",
        "  Legend: V=Suggested vacation  H=Holiday",
        "",
    ]

    cal = calendar.Calendar(firstweekday=0)

    for month in range(1, 13):
        if month not in active_months:
            continue

        lines.append(f"  {calendar.month_name[month]} {year}")
        lines.append("  Mo  Tu  We  Th  Fr  Sa  Su")

        row = ""
        for day_num, weekday in cal.itermonthdays2(year, month):
            if day_num == 0:
                row += "    "
            else:
                d = datetime.date(year, month, day_num)
                if d in holiday_set:
                    cell = f" {day_num:>2}H"
                elif d in vacation_set:
                    cell = f" {day_num:>2}V"
                else:
                    cell = f"  {day_num:>2}"
                row += cell

            if weekday == 6:
                lines.append(row)
                row = ""

        if row.strip():
            lines.append(row)
        lines.append("")

    return "\n".join(lines)
