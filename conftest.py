"""Shared fixtures: Oyez payload builders and in-memory store/client doubles"""
import copy
from datetime import datetime, timezone

import pytest

from case_records import CaseDetail, Justice
from oyez_client import UpstreamFetchError

OYEZ = "https://api.oyez.org"

# 2023-06-30 and 2023-10-02 at 04:00 UTC
DECIDED_TS = 1688097600
ARGUED_TS = 1696219200


def make_vote(identifier, side, opinion_type=None, last_name=None):
    last_name = last_name or identifier.split("_")[-1].title()
    return {
        "member": {
            "name": identifier.replace("_", " ").title(),
            "last_name": last_name,
            "href": f"{OYEZ}/people/{identifier}",
        },
        "vote": side,
        "opinion_type": opinion_type,
        "joining": [],
    }


def make_case(term, docket, name="Alpha v. Beta", majority=None, minority=None, votes=None,
              conclusion=None, timeline=None, with_decision=True, **extra):
    case = {
        "ID": abs(hash((term, docket))) % 100000,
        "name": name,
        "term": term,
        "docket_number": docket,
        "first_party": None,
        "second_party": None,
        "description": "<p>A case&nbsp;about things.</p>",
        "facts_of_the_case": "<p>Facts.</p>",
        "question": "<p>Question?</p>",
        "conclusion": conclusion,
        "citation": {"volume": "600", "page": None, "year": term},
        "justia_url": f"https://supreme.justia.com/cases/federal/us/600/{docket}/",
        "href": f"{OYEZ}/cases/{term}/{docket}",
        "advocates": [
            {"advocate": {"name": "Pat Counsel", "href": f"{OYEZ}/people/pat_counsel"},
             "advocate_description": "for the petitioner"},
        ],
        "written_opinion": [
            {"id": 1, "title": "Opinion of the Court", "type": {"value": "majority", "label": "Majority"},
             "justia_opinion_url": "https://example.org/op", "judge_full_name": None,
             "judge_last_name": None},
        ],
        "timeline": timeline if timeline is not None else [
            {"event": "Granted", "dates": [1680000000]},
            {"event": "Argued", "dates": [1690000000]},
        ],
        "decisions": None,
    }
    if with_decision and (majority is not None or minority is not None or votes):
        case["decisions"] = [{
            "majority_vote": majority,
            "minority_vote": minority,
            "decision_type": "majority opinion",
            "winning_party": "Alpha",
            "description": None,
            "votes": votes or [],
        }]
    case.update(extra)
    return case


def list_item(detail):
    return {key: detail[key] for key in ("ID", "name", "term", "docket_number", "description",
                                         "href", "timeline", "citation")}


def make_justice_payload(identifier, home_state="Ohio", law_school="Yale", role_title="Associate Justice"):
    return {
        "name": identifier.replace("_", " ").title(),
        "last_name": identifier.split("_")[-1].title(),
        "identifier": identifier,
        "home_state": home_state,
        "law_school": law_school,
        "roles": [
            {"role_title": "Judge, Court of Appeals", "appointing_president": "Someone",
             "date_start": 900000000, "date_end": 1000000000},
            {"role_title": role_title, "appointing_president": "George W. Bush",
             "date_start": 1128000000, "date_end": None},
        ],
        "thumbnail": {"href": f"{OYEZ}/images/{identifier}.jpg"},
    }


def detail_to_row(detail: CaseDetail, fetched_at=None):
    """The row upsert_case would leave behind for ``detail``"""
    return {
        "term": detail.term,
        "docket_number": detail.docket_number,
        "name": detail.name,
        "first_party": detail.first_party or None,
        "second_party": detail.second_party or None,
        "description": detail.description,
        "facts_of_the_case": detail.facts_of_the_case,
        "question": detail.question,
        "conclusion": detail.conclusion,
        "decision_date": detail.decision_date,
        "citation": detail.citation.to_json() if detail.citation else None,
        "justia_url": detail.justia_url,
        "href": detail.href,
        "decisions": [d.to_json() for d in detail.decisions],
        "advocates": [a.to_json() for a in detail.advocates],
        "written_opinion": [o.to_json() for o in detail.written_opinion],
        "timeline": [t.to_json() for t in detail.timeline],
        "is_decided": detail.has_structured_votes,
        "fetched_at": fetched_at or datetime.now(timezone.utc),
    }


class FakeStore:
    """In-memory stand-in for CaseStore with the same method surface"""

    def __init__(self):
        self.cases = {}
        self.justices = {}
        self.case_writes = []
        self.sync_runs = {}
        self.search_calls = []
        self.search_rows = []
        self.fail_upserts_for = set()

    def case_state(self, term, docket_number):
        row = self.cases.get((term, docket_number))
        return None if row is None else row["is_decided"]

    def upsert_case(self, detail):
        from case_data import StorageError
        if detail.docket_number in self.fail_upserts_for:
            raise StorageError("constraint violation")
        self.case_writes.append((detail.term, detail.docket_number))
        self.cases[(detail.term, detail.docket_number)] = detail_to_row(detail)

    def case_row(self, term, docket_number):
        row = self.cases.get((term, docket_number))
        return copy.deepcopy(row) if row else None

    def case_rows(self, terms=None):
        keys = sorted(self.cases)
        if terms is not None:
            terms = list(terms)
            keys = [k for k in keys if k[0] in terms]
        return [copy.deepcopy(self.cases[k]) for k in keys]

    def vote_rows(self, terms):
        return [row["decisions"] for row in self.case_rows(terms) if row["decisions"]]

    def terms(self):
        return sorted({term for term, _ in self.cases}, reverse=True)

    def search_case_rows(self, tsquery, raw_query, threshold, limit):
        self.search_calls.append((tsquery, raw_query, threshold, limit))
        return copy.deepcopy(self.search_rows)

    def justice_ids(self):
        return set(self.justices)

    def upsert_justice(self, justice: Justice):
        row = justice.to_dict()
        existing = self.justices.get(justice.identifier)
        if existing:
            for key in ("home_state", "law_school"):
                if row[key] is None:
                    row[key] = existing[key]
        self.justices[justice.identifier] = row

    def justice_row(self, identifier):
        row = self.justices.get(identifier)
        return dict(row) if row else None

    def justice_rows(self):
        return [dict(r) for r in sorted(self.justices.values(), key=lambda r: r["last_name"])]

    def start_sync_run(self, terms):
        run_id = len(self.sync_runs) + 1
        self.sync_runs[run_id] = {"terms": list(terms), "status": "running"}
        return run_id

    def finish_sync_run(self, run_id, status, counts, message=None):
        self.sync_runs[run_id].update(status=status, message=message, **counts)


class FakeClient:
    """Serves canned Oyez payloads and records every fetch"""

    def __init__(self, listings=None, details=None, justices=None):
        self.listings = listings or {}
        self.details = {d["href"]: d for d in (details or [])}
        self.justices = justices or {}
        self.fetched = []

    def case_url(self, term, docket_number):
        return f"{OYEZ}/cases/{term}/{docket_number}"

    def justice_url(self, identifier):
        return f"{OYEZ}/people/{identifier}"

    def list_term_cases(self, term):
        listing = self.listings.get(term)
        if listing is None or isinstance(listing, Exception):
            raise UpstreamFetchError(f"{OYEZ}/cases", "HTTP 503", 503)
        return copy.deepcopy(listing)

    def fetch_case(self, href):
        self.fetched.append(href)
        detail = self.details.get(href)
        if detail is None:
            raise UpstreamFetchError(href, "HTTP 404", 404)
        return copy.deepcopy(detail)

    def fetch_justice(self, href):
        self.fetched.append(href)
        identifier = href.split("/people/")[1]
        payload = self.justices.get(identifier)
        if payload is None:
            raise UpstreamFetchError(href, "HTTP 404", 404)
        return copy.deepcopy(payload)


@pytest.fixture
def store():
    return FakeStore()
