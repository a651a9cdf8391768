"""Holiday sources.

Every source exposes ``fetch(start, end) -> list[Holiday]`` returning the
holidays between *start* and *end* (inclusive), sorted by date.  Raw rows
coming from outside the process are validated through :class:`HolidayRow`;
rows that fail validation are skipped.
"""

from __future__ import annotations

import contextvars
import datetime
import json
import logging
import threading
import time
from collections.abc import Callable, Iterable
from typing import Any, Protocol

import httpx
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from ferias.holidays import Holiday, check_preset
from ferias.storage import KeyValueStore

log = logging.getLogger(__name__)

DEFAULT_LABEL = "Feriado"
DEFAULT_KIND = "nacional"

# Set by fetch_with_deadline in the worker thread; once the event fires the
# fetch is abandoned and must stop issuing requests.
_cancel_event: contextvars.ContextVar[threading.Event | None] = contextvars.ContextVar(
    "holiday_fetch_cancel", default=None
)


def fetch_cancelled() -> bool:
    """Return True when the running fetch has outlived its deadline."""
    event = _cancel_event.get()
    return event is not None and event.is_set()


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class HolidaySourceError(Exception):
    """The holiday source could not deliver data."""


class HolidayFetchTimeout(HolidaySourceError):
    """The holiday source did not answer before the deadline."""


# ---------------------------------------------------------------------------
# Row validation
# ---------------------------------------------------------------------------


class HolidayRow(BaseModel):
    """A raw holiday row as stored in the ``feriados`` table."""

    model_config = ConfigDict(extra="ignore")

    date: datetime.date = Field(validation_alias=AliasChoices("data", "date"))
    label: str | None = Field(
        default=None, validation_alias=AliasChoices("descricao", "nome", "label")
    )
    kind: str | None = Field(default=None, validation_alias=AliasChoices("tipo", "kind"))

    def to_holiday(self) -> Holiday:
        return Holiday(
            date=self.date,
            label=(self.label or "").strip() or DEFAULT_LABEL,
            kind=self.kind or DEFAULT_KIND,
        )


def parse_rows(rows: Iterable[Any]) -> list[Holiday]:
    """Validate raw rows into sorted holidays, skipping malformed ones."""
    holidays: list[Holiday] = []
    for i, row in enumerate(rows):
        try:
            holidays.append(HolidayRow.model_validate(row).to_holiday())
        except ValidationError as exc:
            log.warning("Skipping invalid holiday row #%d: %s", i, exc.errors()[0]["msg"])
    return sorted(holidays)


def _in_range(holidays: Iterable[Holiday], start: datetime.date, end: datetime.date) -> list[Holiday]:
    return sorted(h for h in holidays if start <= h.date <= end)


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------


class HolidaySource(Protocol):
    def fetch(self, start: datetime.date, end: datetime.date) -> list[Holiday]: ...


class StaticHolidaySource:
    """Serves a fixed list of holidays."""

    def __init__(self, holidays: Iterable[Holiday]):
        self.holidays = sorted(set(holidays))

    def fetch(self, start: datetime.date, end: datetime.date) -> list[Holiday]:
        return _in_range(self.holidays, start, end)


class PresetHolidaySource:
    """Computes holidays from a built-in country preset.

    Raises ``KeyError`` on construction if the country is not supported.
    """

    def __init__(self, country: str):
        self.country = country
        self._preset = check_preset(country)

    def fetch(self, start: datetime.date, end: datetime.date) -> list[Holiday]:
        holidays: list[Holiday] = []
        for year in range(start.year, end.year + 1):
            holidays.extend(self._preset(year))
        return _in_range(holidays, start, end)


class CombinedHolidaySource:
    """Merges several sources; the first source to name a date wins."""

    def __init__(self, *sources: HolidaySource):
        self.sources = sources

    def fetch(self, start: datetime.date, end: datetime.date) -> list[Holiday]:
        by_date: dict[datetime.date, Holiday] = {}
        for source in self.sources:
            for holiday in source.fetch(start, end):
                by_date.setdefault(holiday.date, holiday)
        return sorted(by_date.values())


class SupabaseHolidaySource:
    """Reads the holiday table through the hosted PostgREST API.

    Transport errors and 5xx answers are retried ``retries`` times with an
    exponential backoff; anything else raises :class:`HolidaySourceError`.
    """

    def __init__(
        self,
        url: str,
        key: str,
        table: str = "feriados",
        *,
        timeout: float = 10.0,
        retries: int = 2,
        backoff: float = 0.5,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if not url:
            raise ValueError("url must not be empty")
        self.base_url = url.rstrip("/")
        self.table = table
        self.retries = retries
        self.backoff = backoff
        self._sleep = sleep
        headers = {
            "apikey": key,
            "Authorization": f"Bearer {key}",
            "Accept": "application/json",
        }
        self._client = httpx.Client(
            headers=headers,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> SupabaseHolidaySource:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _wait(self, attempts: int) -> None:
        delay = self.backoff * 2 ** (attempts - 1)
        event = _cancel_event.get()
        if event is not None:
            # wakes up as soon as the deadline passes
            event.wait(delay)
        else:
            self._sleep(delay)

    def _get(self, url: str, params: list[tuple[str, str]]) -> httpx.Response:
        attempts = 0
        while True:
            if fetch_cancelled():
                raise HolidayFetchTimeout("holiday fetch cancelled after its deadline")
            attempts += 1
            try:
                resp = self._client.get(url, params=params)
                resp.raise_for_status()
                return resp
            except httpx.HTTPStatusError as exc:
                code = exc.response.status_code
                if code >= 500 and attempts <= self.retries and not fetch_cancelled():
                    log.warning("Holiday table answered HTTP %d, retrying (%d)", code, attempts)
                    self._wait(attempts)
                    continue
                raise HolidaySourceError(f"holiday table returned HTTP {code}") from exc
            except httpx.TransportError as exc:
                if attempts <= self.retries and not fetch_cancelled():
                    log.warning("Holiday table unreachable (%s), retrying (%d)", exc, attempts)
                    self._wait(attempts)
                    continue
                raise HolidaySourceError(f"holiday table unreachable: {exc}") from exc

    def fetch(self, start: datetime.date, end: datetime.date) -> list[Holiday]:
        url = f"{self.base_url}/rest/v1/{self.table}"
        params = [
            ("select", "*"),
            ("data", f"gte.{start.isoformat()}"),
            ("data", f"lte.{end.isoformat()}"),
            ("order", "data.asc"),
        ]
        resp = self._get(url, params)
        try:
            payload = resp.json()
        except ValueError as exc:
            raise HolidaySourceError("holiday table returned invalid JSON") from exc
        if not isinstance(payload, list):
            raise HolidaySourceError("holiday table returned a non-list payload")
        holidays = parse_rows(payload)
        log.debug("Fetched %d holidays between %s and %s", len(holidays), start, end)
        return holidays


class CachedHolidaySource:
    """Caches another source's results in a key-value store for ``ttl`` seconds."""

    def __init__(
        self,
        source: HolidaySource,
        store: KeyValueStore,
        ttl: float,
        *,
        namespace: str = "feriados",
        clock: Callable[[], float] = time.time,
    ):
        self.source = source
        self.store = store
        self.ttl = ttl
        self.namespace = namespace
        self._clock = clock

    def _key(self, start: datetime.date, end: datetime.date) -> str:
        return f"{self.namespace}:{start.isoformat()}:{end.isoformat()}"

    def _load(self, key: str) -> list[Holiday] | None:
        raw = self.store.get(key)
        if raw is None:
            return None
        try:
            entry = json.loads(raw)
            timestamp = float(entry["timestamp"])
            rows = entry["data"]
            if not isinstance(rows, list):
                raise TypeError("cached data is not a list")
        except (ValueError, KeyError, TypeError):
            log.warning("Dropping corrupt holiday cache entry %s", key)
            self.store.delete(key)
            return None
        if self._clock() - timestamp > self.ttl:
            self.store.delete(key)
            return None
        return parse_rows(rows)

    def fetch(self, start: datetime.date, end: datetime.date) -> list[Holiday]:
        key = self._key(start, end)
        cached = self._load(key)
        if cached is not None:
            log.debug("Holiday cache hit for %s", key)
            return cached

        holidays = self.source.fetch(start, end)
        entry = {
            "timestamp": self._clock(),
            "data": [
                {"date": h.date.isoformat(), "label": h.label, "kind": h.kind} for h in holidays
            ],
        }
        self.store.set(key, json.dumps(entry))
        return holidays


# ---------------------------------------------------------------------------
# Deadline
# ---------------------------------------------------------------------------


def fetch_with_deadline(
    source: HolidaySource,
    start: datetime.date,
    end: datetime.date,
    timeout: float,
) -> list[Holiday]:
    """Run ``source.fetch`` with an explicit deadline.

    The fetch runs in a daemon ``holiday-fetch`` thread.  On expiry its cancel
    event is set, so :class:`SupabaseHolidaySource` stops before its next
    request or backoff, and :class:`HolidayFetchTimeout` is raised.  Any other
    failure is raised as :class:`HolidaySourceError`.
    """
    worker = _FetchThread(source, start, end)
    worker.start()
    worker.join(timeout)
    if worker.is_alive():
        worker.cancel.set()
        raise HolidayFetchTimeout(f"holiday fetch exceeded the {timeout:g}s deadline")
    if worker.error is not None:
        if isinstance(worker.error, HolidaySourceError):
            raise worker.error
        raise HolidaySourceError(f"holiday fetch failed: {worker.error}") from worker.error
    return worker.result


class _FetchThread(threading.Thread):
    def __init__(self, source: HolidaySource, start: datetime.date, end: datetime.date):
        super().__init__(name="holiday-fetch", daemon=True)
        self.source = source
        self.start_date = start
        self.end_date = end
        self.cancel = threading.Event()
        self.result: list[Holiday] = []
        self.error: Exception | None = None

    def run(self) -> None:
        _cancel_event.set(self.cancel)
        try:
            self.result = self.source.fetch(self.start_date, self.end_date)
        except Exception as exc:
            self.error = exc
        if self.cancel.is_set():
            log.debug("Abandoned holiday fetch finished after its deadline")
