"""Tests for the read API used by the presentation layer"""
from unittest.mock import MagicMock

from case_queries import (LIFETIME, get_case, get_justice_profile, list_amendments, list_cases,
                          list_constitution, list_justices, list_terms, make_snippet, search_constitution,
                          search_justices)
from case_records import parse_justice
from case_sync import sync_term
from conftest import DECIDED_TS, FakeClient, list_item, make_case, make_justice_payload, make_vote

ROBERTS = "john_g_roberts_jr"
THOMAS = "clarence_thomas"
KAGAN = "elena_kagan"


def _decided(term, docket, ts, majority, minority, votes):
    return make_case(term, docket, majority=majority, minority=minority, votes=votes, timeline=[
        {"event": "Argued", "dates": [ts - 1000000]},
        {"event": "Decided", "dates": [ts]},
    ])


def _sync(store, cases):
    for term in sorted({c["term"] for c in cases}):
        term_cases = [c for c in cases if c["term"] == term]
        sync_term(store, FakeClient({term: [list_item(c) for c in term_cases]}, term_cases), term)


def _store_justice(store, identifier, last_name, role_title="Associate Justice", date_start=1128000000):
    payload = make_justice_payload(identifier, role_title=role_title)
    payload["last_name"] = last_name
    payload["roles"][1]["date_start"] = date_start
    store.upsert_justice(parse_justice(payload, identifier))


def _populate(store):
    _sync(store, [
        _decided("2023", "22-451", DECIDED_TS, 2, 1, [
            make_vote(ROBERTS, "majority", "majority", last_name="Roberts"),
            make_vote(THOMAS, "majority", "none", last_name="Thomas"),
            make_vote(KAGAN, "minority", "dissent", last_name="Kagan"),
        ]),
        _decided("2023", "23-100", DECIDED_TS - 86400 * 30, 3, 0, [
            make_vote(ROBERTS, "majority", None, last_name="Roberts"),
            make_vote(THOMAS, "majority", "concurrence", last_name="Thomas"),
            make_vote(KAGAN, "majority", "majority", last_name="Kagan"),
        ]),
        make_case("2023", "23-555"),
        _decided("2022", "21-1", DECIDED_TS - 86400 * 365, 2, 1, [
            make_vote(THOMAS, "minority", "dissent", last_name="Thomas"),
            make_vote(KAGAN, "majority", "majority", last_name="Kagan"),
            make_vote(ROBERTS, "majority", None, last_name="Roberts"),
        ]),
    ])
    _store_justice(store, THOMAS, "Thomas", date_start=687000000)
    _store_justice(store, KAGAN, "Kagan", date_start=1281000000)
    _store_justice(store, ROBERTS, "Roberts", role_title="Chief Justice of the United States",
                   date_start=1128000000)


def test_list_cases_newest_decision_first(store):
    _populate(store)
    cases = list_cases(store, "2023")
    assert [c.docket_number for c in cases] == ["22-451", "23-100", "23-555"]
    assert cases[0].decision_date == "June 30, 2023"
    assert cases[2].decision_date is None


def test_list_cases_unknown_term(store):
    assert list_cases(store, "1901") == []


def test_get_case(store):
    _populate(store)
    detail = get_case(store, "2023", "22-451")
    assert detail.has_structured_votes
    assert detail.fetched_at is not None
    assert get_case(store, "2023", "99-999") is None


def test_list_terms(store):
    _populate(store)
    assert list_terms(store) == ["2023", "2022"]


class TestJustices:
    def test_chief_first_then_seniority(self, store):
        _populate(store)
        records = list_justices(store, "2023")
        assert [r.justice.identifier for r in records] == [ROBERTS, THOMAS, KAGAN]

    def test_term_counters(self, store):
        _populate(store)
        records = {r.justice.identifier: r for r in list_justices(store, "2023")}
        kagan = records[KAGAN]
        assert (kagan.majority_count, kagan.dissent_count, kagan.authored_count) == (1, 1, 2)
        thomas = records[THOMAS]
        assert (thomas.majority_count, thomas.dissent_count, thomas.authored_count) == (2, 0, 1)

    def test_lifetime_counters(self, store):
        _populate(store)
        records = {r.justice.identifier: r for r in list_justices(store, LIFETIME)}
        assert records[THOMAS].dissent_count == 1
        assert records[THOMAS].majority_count == 2

    def test_unstored_justice_gets_placeholder(self, store):
        _sync(store, [_decided("2023", "1", DECIDED_TS, 1, 0, [
            make_vote("new_justice", "majority", last_name="Newcomer"),
        ])])
        [record] = list_justices(store, "2023")
        assert record.justice.identifier == "new_justice"
        assert record.justice.last_name == "Newcomer"
        assert record.justice.role_title is None

    def test_empty_term(self, store):
        assert list_justices(store, "2023") == []

    def test_profile(self, store):
        _populate(store)
        profile = get_justice_profile(store, KAGAN)

        assert profile.record.justice.last_name == "Kagan"
        assert [c.docket_number for c in profile.opinions] == ["21-1", "22-451", "23-100"]
        assert [c.docket_number for c in profile.dissents] == ["22-451"]
        assert profile.dissents[0].description == "A case about things."
        # Divided cases: 21-1 (with Roberts, against Thomas) and 22-451 (against both)
        assert [(a.identifier, a.agreed, a.total) for a in profile.alignments] == [
            (ROBERTS, 1, 2),
            (THOMAS, 0, 2),
        ]

    def test_profile_for_one_term(self, store):
        _populate(store)
        profile = get_justice_profile(store, THOMAS, "2022")
        assert [c.docket_number for c in profile.dissents] == ["21-1"]
        assert profile.record.dissent_count == 1

    def test_unknown_justice(self, store):
        _populate(store)
        assert get_justice_profile(store, "nobody") is None


def test_search_justices_escapes_like_wildcards():
    store = MagicMock()
    store.search_justice_rows.return_value = [{"identifier": "sandra_day_oconnor", "name": "Sandra Day O'Connor",
                                               "last_name": "O'Connor"}]
    [justice] = search_justices(store, " o_con%nor ")
    assert justice.last_name == "O'Connor"
    store.search_justice_rows.assert_called_once_with("%o\\_con\\%nor%", 20)


def test_blank_searches_do_not_query():
    store = MagicMock()
    assert search_justices(store, "   ") == []
    assert search_constitution(store, None) == []
    store.search_justice_rows.assert_not_called()
    store.search_constitution_rows.assert_not_called()


def test_list_constitution_skips_malformed_rows():
    store = MagicMock()
    store.constitution_rows.return_value = [
        {"article": "Preamble", "article_title": "Preamble", "text": "We the People", "sort_order": 0},
        {"article": "Art. I", "text": None},
    ]
    assert [s.article for s in list_constitution(store)] == ["Preamble"]


def test_list_amendments():
    store = MagicMock()
    store.constitution_rows.return_value = [
        {"article": "Preamble", "article_title": "Preamble", "text": "We the People", "sort_order": 0},
        {"article": "III", "article_title": "Judicial Branch", "text": "The judicial Power", "sort_order": 1},
        {"article": "Amdt. 1", "article_title": "First Amendment", "text": "Congress shall make no law",
         "sort_order": 2},
        {"article": "Amdt. 19", "article_title": "Nineteenth Amendment", "text": "The right of citizens",
         "sort_order": 3},
    ]
    assert [s.article for s in list_amendments(store)] == ["Amdt. 1", "Amdt. 19"]


def test_search_constitution_snippets():
    text = "Congress shall make no law respecting an establishment of religion, " * 5
    store = MagicMock()
    store.search_constitution_rows.return_value = [
        {"article": "Amdt. 1", "article_title": "First Amendment", "text": text, "sort_order": 10},
    ]
    [match] = search_constitution(store, "religion")
    assert match.section.is_amendment
    assert "religion" in match.snippet
    assert match.snippet.endswith("...")


def test_make_snippet():
    assert make_snippet("short text", "text") == "short text"
    long_text = "a" * 100 + " needle " + "b" * 200
    snippet = make_snippet(long_text, "NEEDLE")
    assert snippet.startswith("...")
    assert snippet.endswith("...")
    assert "needle" in snippet
    assert make_snippet("no match here", "zzz") == "no match here"
