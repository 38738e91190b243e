from __future__ import annotations

import pytest

from url_list import (
    Mode,
    Record,
    format_record,
    name_key,
    render,
    resolve,
    sort_records,
)

RECORDS = [
    Record("beta", "http://b/"),
    Record("Alpha", "http://a1/"),
    Record("gamma", "http://g/"),
    Record("alpha", "http://a2/"),
]


def test_sort_is_case_insensitive_and_stable() -> None:
    ordered = sort_records(RECORDS)
    assert [r.url for r in ordered] == ["http://a1/", "http://a2/", "http://b/", "http://g/"]


def test_sort_disabled_keeps_file_order() -> None:
    assert sort_records(RECORDS, key=None) == RECORDS


def test_sort_does_not_mutate_input() -> None:
    records = list(RECORDS)
    sort_records(records)
    assert records == RECORDS


def test_sort_accepts_custom_key() -> None:
    ordered = sort_records(RECORDS, key=lambda r: r.url)
    assert [r.url for r in ordered] == sorted(r.url for r in RECORDS)
    assert name_key(Record("MiXed", "u")) == "mixed"


def test_render_pads_names_to_widest() -> None:
    lines = render([Record("a", "http://a/"), Record("long name", "http://l/")])
    assert lines == [
        "a         - http://a/",
        "long name - http://l/",
    ]


def test_render_empty_store_has_no_lines() -> None:
    assert render([]) == []


def test_render_line_i_is_record_i() -> None:
    ordered = sort_records(RECORDS)
    lines = render(ordered)
    assert len(lines) == len(ordered)
    for line, record in zip(lines, ordered):
        assert line.startswith(record.name)
        assert line.endswith(" - " + record.url)


def test_resolve_returns_record_on_line() -> None:
    for i, record in enumerate(RECORDS):
        assert resolve((i, 5), RECORDS) is record
        assert resolve(i, RECORDS) is record


@pytest.mark.parametrize("cursor", [(0, 0), (3, 1), 0, -1])
def test_resolve_empty_store_is_none(cursor) -> None:
    assert resolve(cursor, []) is None


def test_resolve_past_last_line_is_none() -> None:
    assert resolve((len(RECORDS), 0), RECORDS) is None


@pytest.mark.parametrize(
    ("mode", "expected"),
    [
        (Mode.ANGLE_BRACKETED, "<URL:http://x/ - y>"),
        (Mode.NAKED, "http://x/ - y"),
        (Mode.NAMED_ANGLE_BRACKETED, "a - <URL:b <URL:http://x/ - y>"),
        (Mode.NAME_ONLY, "a - <URL:b"),
    ],
)
def test_format_record_inserts_content_verbatim(mode: Mode, expected: str) -> None:
    record = Record("a - <URL:b", "http://x/ - y")
    assert format_record(record, mode) == expected


def test_format_record_rejects_unknown_mode() -> None:
    with pytest.raises(ValueError):
        format_record(Record("a", "b"), "naked")
