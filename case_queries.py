"""
Read API for the presentation layer.

Lookups that find nothing return None or an empty list; they never raise for
a missing case, justice or blank query. Storage failures still propagate as
StorageError.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from case_analytics import compute_justice_agreement, load_cases
from case_data import CaseStore
from case_records import (CaseDetail, CaseReference, CaseSummary, ConstitutionSection, Justice,
                          JusticeProfile, JusticeRecord, VoteSide, case_detail_from_row,
                          case_summary_from_row, justice_from_row)
from term_utils import strip_html

logger = logging.getLogger(__name__)

LIFETIME = "lifetime"
SEARCH_LIMIT = 20
SNIPPET_BEFORE = 60
SNIPPET_AFTER = 140


def list_cases(store: CaseStore, term: str) -> List[CaseSummary]:
    """Cases of a term, most recently decided first, undecided last"""
    summaries = [case_summary_from_row(row) for row in store.case_rows([term])]
    return sorted(
        summaries,
        key=lambda s: (s.decision_timestamp is None, -(s.decision_timestamp or 0)),
    )


def get_case(store: CaseStore, term: str, docket_number: str) -> Optional[CaseDetail]:
    row = store.case_row(term, docket_number)
    if row is None:
        return None
    return case_detail_from_row(row)


def list_terms(store: CaseStore) -> List[str]:
    return store.terms()


def _scope(term: str) -> Optional[List[str]]:
    return None if term == LIFETIME else [term]


def _tally(cases: List[CaseDetail]) -> Dict[str, JusticeRecord]:
    """Majority, dissent and authorship counts per justice from first decisions"""
    records: Dict[str, JusticeRecord] = {}
    for case in cases:
        if case.decision is None:
            continue
        for vote in case.decision.votes:
            if not vote.identifier:
                continue
            record = records.get(vote.identifier)
            if record is None:
                # Placeholder until the profile has been discovered
                record = JusticeRecord(Justice(
                    identifier=vote.identifier,
                    name=vote.name or vote.identifier,
                    last_name=vote.last_name or vote.identifier,
                ))
                records[vote.identifier] = record
            if vote.side is VoteSide.MAJORITY:
                record.majority_count += 1
            elif vote.side is VoteSide.MINORITY:
                record.dissent_count += 1
            if vote.authored:
                record.authored_count += 1
    return records


def list_justices(store: CaseStore, term: str) -> List[JusticeRecord]:
    """Justices who voted in ``term`` with their term counters, Chief Justice first"""
    records = _tally(load_cases(store, _scope(term)))
    if not records:
        return []
    stored = {row['identifier']: justice_from_row(row) for row in store.justice_rows()}
    for identifier, record in records.items():
        if identifier in stored:
            record.justice = stored[identifier]
    return sorted(
        records.values(),
        key=lambda r: (
            not r.justice.is_chief,
            r.justice.date_start is None,
            r.justice.date_start or 0,
            r.justice.last_name,
        ),
    )


def get_justice_profile(store: CaseStore, identifier: str,
                        term: str = LIFETIME) -> Optional[JusticeProfile]:
    """Profile for one justice over a term, or over every stored term"""
    row = store.justice_row(identifier)
    if row is None:
        return None
    justice = justice_from_row(row)
    cases = load_cases(store, _scope(term))

    record = _tally(cases).get(identifier) or JusticeRecord(justice)
    record.justice = justice

    opinions: List[CaseReference] = []
    dissents: List[CaseReference] = []
    for case in cases:
        if case.decision is None:
            continue
        for vote in case.decision.votes:
            if vote.identifier != identifier:
                continue
            reference = CaseReference(
                term=case.term,
                docket_number=case.docket_number,
                case_name=case.name,
                description=strip_html(case.description),
                opinion_type=vote.opinion_type,
            )
            if vote.authored:
                opinions.append(reference)
            if vote.side is VoteSide.MINORITY:
                dissents.append(reference)

    alignments = compute_justice_agreement(cases).alignments_for(identifier)
    return JusticeProfile(record=record, opinions=opinions, dissents=dissents, alignments=alignments)


def _like_pattern(query: str) -> str:
    escaped = query.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')
    return f"%{escaped}%"


def search_justices(store: CaseStore, query: Optional[str], limit: int = SEARCH_LIMIT) -> List[Justice]:
    query = (query or "").strip()
    if not query:
        return []
    return [justice_from_row(row) for row in store.search_justice_rows(_like_pattern(query), limit)]


def list_constitution(store: CaseStore) -> List[ConstitutionSection]:
    sections = (ConstitutionSection.from_json(row) for row in store.constitution_rows())
    return [s for s in sections if s is not None]


def list_amendments(store: CaseStore) -> List[ConstitutionSection]:
    return [s for s in list_constitution(store) if s.is_amendment]


@dataclass
class ConstitutionMatch:
    section: ConstitutionSection
    snippet: str


def make_snippet(text: str, query: str) -> str:
    """A window of ``text`` around the first case-insensitive hit of ``query``"""
    position = text.lower().find(query.lower())
    if position < 0:
        return text[:SNIPPET_BEFORE + SNIPPET_AFTER].strip()
    start = max(0, position - SNIPPET_BEFORE)
    end = min(len(text), position + len(query) + SNIPPET_AFTER)
    snippet = text[start:end].strip()
    if start > 0:
        snippet = "..." + snippet
    if end < len(text):
        snippet = snippet + "..."
    return snippet


def search_constitution(store: CaseStore, query: Optional[str],
                        limit: int = SEARCH_LIMIT) -> List[ConstitutionMatch]:
    query = (query or "").strip()
    if not query:
        return []
    matches = []
    for row in store.search_constitution_rows(_like_pattern(query), limit):
        section = ConstitutionSection.from_json(row)
        if section is not None:
            matches.append(ConstitutionMatch(section, make_snippet(section.text, query)))
    return matches


def last_sync(store: CaseStore) -> Optional[Dict[str, Any]]:
    """Status row of the most recent synchronization run"""
    return store.latest_sync_run()
