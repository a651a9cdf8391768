from __future__ import annotations

import datetime
import json
import threading
import time

import httpx
import pytest

from ferias.holidays import Holiday
from ferias.sources import (
    CachedHolidaySource,
    CombinedHolidaySource,
    HolidayFetchTimeout,
    HolidaySourceError,
    PresetHolidaySource,
    StaticHolidaySource,
    SupabaseHolidaySource,
    fetch_with_deadline,
    parse_rows,
)
from ferias.storage import JsonFileStore, MemoryStore

START = datetime.date(2025, 1, 1)
END = datetime.date(2025, 12, 31)

ROWS = [
    {"id": 1, "data": "2025-04-21", "descricao": "Tiradentes", "tipo": "nacional"},
    {"id": 2, "data": "2025-01-01", "nome": "Confraternização Universal"},
]


def _supabase(handler, **kwargs) -> SupabaseHolidaySource:
    kwargs.setdefault("sleep", lambda _s: None)
    return SupabaseHolidaySource(
        "https://example.supabase.co/",
        "anon-key",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


class TestParseRows:
    def test_table_columns(self) -> None:
        holidays = parse_rows(ROWS)
        assert holidays == [
            Holiday(datetime.date(2025, 1, 1), "Confraternização Universal", "nacional"),
            Holiday(datetime.date(2025, 4, 21), "Tiradentes", "nacional"),
        ]

    def test_plain_field_names(self) -> None:
        (h,) = parse_rows([{"date": "2025-12-25", "label": "Natal", "kind": "religioso"}])
        assert h == Holiday(datetime.date(2025, 12, 25), "Natal", "religioso")

    def test_missing_label_defaults(self) -> None:
        (h,) = parse_rows([{"data": "2025-11-02", "descricao": None}])
        assert h.label == "Feriado"

    def test_invalid_rows_skipped(self) -> None:
        rows = [{"data": "not-a-date"}, {"descricao": "sem data"}, "garbage", ROWS[0]]
        holidays = parse_rows(rows)
        assert [h.label for h in holidays] == ["Tiradentes"]


class TestSupabaseHolidaySource:
    def test_fetch_builds_query(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=ROWS)

        with _supabase(handler) as source:
            holidays = source.fetch(START, END)

        assert [h.label for h in holidays] == ["Confraternização Universal", "Tiradentes"]
        request = seen[0]
        assert request.url.path == "/rest/v1/feriados"
        assert request.url.params.get_list("data") == ["gte.2025-01-01", "lte.2025-12-31"]
        assert request.url.params["order"] == "data.asc"
        assert request.headers["apikey"] == "anon-key"
        assert request.headers["Authorization"] == "Bearer anon-key"

    def test_custom_table(self) -> None:
        paths: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            return httpx.Response(200, json=[])

        with _supabase(handler, table="holidays") as source:
            assert source.fetch(START, END) == []
        assert paths == ["/rest/v1/holidays"]

    def test_retries_server_errors(self) -> None:
        calls = {"n": 0}
        sleeps: list[float] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            if calls["n"] == 1:
                return httpx.Response(503)
            return httpx.Response(200, json=ROWS)

        with _supabase(handler, sleep=sleeps.append, backoff=0.5) as source:
            holidays = source.fetch(START, END)
        assert len(holidays) == 2
        assert calls["n"] == 2
        assert sleeps == [0.5]

    def test_gives_up_after_retries(self) -> None:
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            return httpx.Response(500)

        with _supabase(handler, retries=2) as source:
            with pytest.raises(HolidaySourceError, match="HTTP 500"):
                source.fetch(START, END)
        assert calls["n"] == 3

    def test_client_error_not_retried(self) -> None:
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            return httpx.Response(401, json={"message": "invalid key"})

        with _supabase(handler) as source:
            with pytest.raises(HolidaySourceError, match="HTTP 401"):
                source.fetch(START, END)
        assert calls["n"] == 1

    def test_transport_error(self) -> None:
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            raise httpx.ConnectError("connection refused", request=request)

        with _supabase(handler, retries=1) as source:
            with pytest.raises(HolidaySourceError, match="unreachable"):
                source.fetch(START, END)
        assert calls["n"] == 2

    def test_invalid_json(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"<html>")

        with _supabase(handler) as source:
            with pytest.raises(HolidaySourceError, match="invalid JSON"):
                source.fetch(START, END)

    def test_non_list_payload(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"data": ROWS})

        with _supabase(handler) as source:
            with pytest.raises(HolidaySourceError):
                source.fetch(START, END)

    def test_empty_url_rejected(self) -> None:
        with pytest.raises(ValueError):
            SupabaseHolidaySource("", "key")


class TestSimpleSources:
    def test_static_source_filters_range(self) -> None:
        source = StaticHolidaySource(
            [
                Holiday(datetime.date(2024, 12, 25), "Natal"),
                Holiday(datetime.date(2025, 12, 25), "Natal"),
            ]
        )
        assert [h.date.year for h in source.fetch(START, END)] == [2025]

    def test_preset_source_spans_years(self) -> None:
        source = PresetHolidaySource("br")
        holidays = source.fetch(datetime.date(2024, 12, 1), datetime.date(2025, 1, 31))
        assert [h.date for h in holidays] == [
            datetime.date(2024, 12, 25),
            datetime.date(2025, 1, 1),
        ]

    def test_preset_source_unknown_country(self) -> None:
        with pytest.raises(KeyError):
            PresetHolidaySource("zz")

    def test_combined_source_first_wins(self) -> None:
        custom = StaticHolidaySource(
            [Holiday(datetime.date(2025, 12, 25), "Natal (custom)", "custom")]
        )
        combined = CombinedHolidaySource(custom, PresetHolidaySource("br"))
        holidays = {h.date: h for h in combined.fetch(START, END)}
        assert holidays[datetime.date(2025, 12, 25)].label == "Natal (custom)"
        assert datetime.date(2025, 4, 21) in holidays


class _CountingSource:
    def __init__(self, holidays: list[Holiday]):
        self.holidays = holidays
        self.calls = 0

    def fetch(self, start: datetime.date, end: datetime.date) -> list[Holiday]:
        self.calls += 1
        return list(self.holidays)


class TestCachedHolidaySource:
    def _make(self, ttl: float = 100.0):
        inner = _CountingSource([Holiday(datetime.date(2025, 12, 25), "Natal")])
        store = MemoryStore()
        now = {"t": 1000.0}
        cached = CachedHolidaySource(inner, store, ttl, clock=lambda: now["t"])
        return inner, store, now, cached

    def test_second_fetch_served_from_store(self) -> None:
        inner, store, _now, cached = self._make()
        first = cached.fetch(START, END)
        second = cached.fetch(START, END)
        assert first == second
        assert inner.calls == 1
        assert len(store) == 1

    def test_expired_entry_refetched(self) -> None:
        inner, _store, now, cached = self._make(ttl=100.0)
        cached.fetch(START, END)
        now["t"] += 101
        cached.fetch(START, END)
        assert inner.calls == 2

    def test_corrupt_entry_refetched(self) -> None:
        inner, store, _now, cached = self._make()
        store.set("feriados:2025-01-01:2025-12-31", "{not json")
        holidays = cached.fetch(START, END)
        assert inner.calls == 1
        assert holidays[0].label == "Natal"
        entry = json.loads(store.get("feriados:2025-01-01:2025-12-31") or "")
        assert entry["data"][0]["date"] == "2025-12-25"

    def test_works_with_file_store(self, tmp_path) -> None:
        inner = _CountingSource([Holiday(datetime.date(2025, 12, 25), "Natal")])
        path = tmp_path / "cache.json"
        CachedHolidaySource(inner, JsonFileStore(path), 100.0).fetch(START, END)
        again = CachedHolidaySource(inner, JsonFileStore(path), 100.0).fetch(START, END)
        assert inner.calls == 1
        assert again == [Holiday(datetime.date(2025, 12, 25), "Natal", "nacional")]


class TestJsonFileStore:
    def test_set_get_delete(self, tmp_path) -> None:
        store = JsonFileStore(tmp_path / "sub" / "store.json")
        assert store.get("k") is None
        store.set("k", "v")
        assert store.get("k") == "v"
        store.delete("k")
        assert store.get("k") is None

    def test_unreadable_file_is_ignored(self, tmp_path) -> None:
        path = tmp_path / "store.json"
        path.write_text("[1, 2")
        store = JsonFileStore(path)
        assert store.get("k") is None
        store.set("k", "v")
        assert store.get("k") == "v"


def _fetch_threads() -> list[threading.Thread]:
    return [
        t for t in threading.enumerate() if t.name.startswith("holiday-fetch") and t.is_alive()
    ]


class TestFetchWithDeadline:
    def test_returns_result(self) -> None:
        source = StaticHolidaySource([Holiday(datetime.date(2025, 5, 1), "Dia do Trabalho")])
        assert len(fetch_with_deadline(source, START, END, 1.0)) == 1

    def test_deadline_expiry(self) -> None:
        release = threading.Event()

        class Slow:
            def fetch(self, start, end):
                release.wait(5)
                return []

        try:
            with pytest.raises(HolidayFetchTimeout):
                fetch_with_deadline(Slow(), START, END, 0.05)
        finally:
            release.set()

    def test_expired_fetch_stops_retrying(self) -> None:
        attempts: list[float] = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(time.monotonic())
            time.sleep(0.3)
            raise httpx.ReadTimeout("slow", request=request)

        with _supabase(handler, retries=2, backoff=0.0) as source:
            started = time.monotonic()
            with pytest.raises(HolidayFetchTimeout):
                fetch_with_deadline(source, START, END, 0.1)
            deadline = started + 0.1

            waited = 0.0
            while _fetch_threads() and waited < 2.0:
                time.sleep(0.05)
                waited += 0.05

        assert _fetch_threads() == []
        assert len(attempts) == 1
        assert all(t < deadline for t in attempts)

    def test_fetch_thread_is_daemon(self) -> None:
        release = threading.Event()

        class Slow:
            def fetch(self, start, end):
                release.wait(5)
                return []

        try:
            with pytest.raises(HolidayFetchTimeout):
                fetch_with_deadline(Slow(), START, END, 0.05)
            assert all(t.daemon for t in _fetch_threads())
        finally:
            release.set()

    def test_backoff_interrupted_by_deadline(self) -> None:
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            return httpx.Response(503)

        with _supabase(handler, retries=5, backoff=0.5) as source:
            with pytest.raises(HolidayFetchTimeout):
                fetch_with_deadline(source, START, END, 0.1)
            waited = 0.0
            while _fetch_threads() and waited < 2.0:
                time.sleep(0.05)
                waited += 0.05

        assert _fetch_threads() == []
        assert calls["n"] == 1

    def test_wraps_unexpected_errors(self) -> None:
        class Broken:
            def fetch(self, start, end):
                raise RuntimeError("boom")

        with pytest.raises(HolidaySourceError, match="boom"):
            fetch_with_deadline(Broken(), START, END, 1.0)

    def test_source_errors_pass_through(self) -> None:
        class Down:
            def fetch(self, start, end):
                raise HolidaySourceError("down")

        with pytest.raises(HolidaySourceError, match="down"):
            fetch_with_deadline(Down(), START, END, 1.0)
