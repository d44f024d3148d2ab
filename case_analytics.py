"""
Derived views over the stored cases: vote-split histogram, pairwise justice
agreement, and ranked case search.

Each view is computed from a single bulk read of the relevant rows; the
``compute_*`` functions are pure and work on parsed CaseDetail records.
"""
import itertools
import logging
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

import pandas as pd

from case_data import CaseStore
from case_records import (Alignment, CaseDetail, CaseSummary, ResolvedSplit, VoteSide,
                          case_detail_from_row)

logger = logging.getLogger(__name__)

FUZZY_SIMILARITY_THRESHOLD = 0.15
SEARCH_RESULT_LIMIT = 50


@dataclass
class SplitCount:
    label: str
    count: int


@dataclass
class TermStats:
    splits: List[SplitCount] = field(default_factory=list)
    total_cases: int = 0

    def to_dict(self) -> Dict:
        return asdict(self)


def load_cases(store: CaseStore, terms: Optional[List[str]]) -> List[CaseDetail]:
    """Parse every stored case in ``terms`` (all terms when None) from one query"""
    return [case_detail_from_row(row) for row in store.case_rows(terms)]


def compute_term_stats(cases: Iterable[CaseDetail]) -> TermStats:
    """Histogram of vote splits, unanimous first, then narrowing margins.

    Cases whose split cannot be resolved from either the decision record or
    the conclusion text are left out of the total entirely.
    """
    records = []
    for case in cases:
        split = case.vote_split
        if isinstance(split, ResolvedSplit):
            records.append((split.label, split.majority, split.minority))
    if not records:
        return TermStats()

    df = pd.DataFrame(records, columns=['label', 'majority', 'minority'])
    grouped = (
        df.groupby('label')
        .agg(cases=('majority', 'size'), majority=('majority', 'max'), minority=('minority', 'min'))
        .reset_index()
        .sort_values(['minority', 'majority'], ascending=[True, False], kind='mergesort')
    )
    splits = [SplitCount(label, int(n)) for label, n in zip(grouped['label'], grouped['cases'])]
    return TermStats(splits=splits, total_cases=len(records))


def term_stats(store: CaseStore, term: str) -> TermStats:
    return compute_term_stats(load_cases(store, [term]))


@dataclass
class JusticeRef:
    identifier: str
    name: str
    last_name: str


@dataclass
class AgreementCell:
    agreed: int
    total: int
    rate: Optional[float]


@dataclass
class AgreementMatrix:
    justices: List[JusticeRef] = field(default_factory=list)
    matrix: Dict[str, Dict[str, AgreementCell]] = field(default_factory=dict)
    case_count: int = 0

    def cell(self, a: str, b: str) -> Optional[AgreementCell]:
        return self.matrix.get(a, {}).get(b)

    def alignments_for(self, identifier: str) -> List[Alignment]:
        """Everyone who sat with ``identifier`` at least once, most aligned first"""
        refs = {j.identifier: j for j in self.justices}
        alignments = [
            Alignment(other, refs[other].name, cell.agreed, cell.total, cell.rate)
            for other, cell in self.matrix.get(identifier, {}).items()
            if other != identifier and cell.total > 0
        ]
        return sorted(alignments, key=lambda a: (-a.rate, a.justice_name))

    def to_dict(self) -> Dict:
        return asdict(self)


def compute_justice_agreement(cases: Iterable[CaseDetail]) -> AgreementMatrix:
    """Pairwise agreement over divided cases, ordered into voting blocs.

    Only cases whose decision record itself shows a dissent contribute; a
    split recovered from conclusion text does not. Justices are ordered by
    their mean agreement with everyone else, which is a plain sort, not a
    clustering step.
    """
    agreed: Dict[Tuple[str, str], int] = defaultdict(int)
    total: Dict[Tuple[str, str], int] = defaultdict(int)
    sat: Dict[str, int] = defaultdict(int)
    refs: Dict[str, JusticeRef] = {}
    case_count = 0

    for case in cases:
        decision = case.decision
        if decision is None or (decision.minority_vote or 0) <= 0:
            continue
        sides: Dict[str, VoteSide] = {}
        for vote in decision.votes:
            if vote.side is VoteSide.NONE or not vote.identifier:
                continue
            sides[vote.identifier] = vote.side
            if vote.identifier not in refs:
                refs[vote.identifier] = JusticeRef(
                    vote.identifier,
                    vote.name or vote.identifier,
                    vote.last_name or vote.name or vote.identifier,
                )
        if len(sides) < 2:
            continue

        case_count += 1
        for identifier in sides:
            sat[identifier] += 1
        for a, b in itertools.combinations(sorted(sides), 2):
            total[(a, b)] += 1
            total[(b, a)] += 1
            if sides[a] == sides[b]:
                agreed[(a, b)] += 1
                agreed[(b, a)] += 1

    if not refs or case_count == 0:
        return AgreementMatrix()

    ids = sorted(sat)
    rates = pd.DataFrame(float('nan'), index=ids, columns=ids)
    for (a, b), n in total.items():
        rates.at[a, b] = agreed[(a, b)] / n
    mean_rate = rates.mean(axis=1, skipna=True)

    ordered = sorted(ids, key=lambda j: (-mean_rate[j], refs[j].last_name, j))

    matrix: Dict[str, Dict[str, AgreementCell]] = {}
    for a in ordered:
        row = {a: AgreementCell(sat[a], sat[a], 1.0)}
        for b in ordered:
            if b == a:
                continue
            n = total.get((a, b), 0)
            row[b] = AgreementCell(agreed.get((a, b), 0), n, agreed.get((a, b), 0) / n if n else None)
        matrix[a] = row

    return AgreementMatrix(
        justices=[refs[j] for j in ordered],
        matrix=matrix,
        case_count=case_count,
    )


def justice_agreement(store: CaseStore, term: str) -> AgreementMatrix:
    return compute_justice_agreement(load_cases(store, [term]))


@dataclass
class SearchResult:
    case: CaseSummary
    text_match: bool
    rank: float
    similarity: float


def search_terms(query: Optional[str]) -> List[str]:
    """Whitespace-separated words with everything but letters and digits removed"""
    if not isinstance(query, str):
        return []
    words = ("".join(ch for ch in word if ch.isalnum()) for word in query.split())
    return [w for w in words if w]


def build_tsquery(words: List[str]) -> str:
    return " & ".join(words)


def search_cases(store: CaseStore, query: Optional[str],
                 limit: int = SEARCH_RESULT_LIMIT) -> List[SearchResult]:
    """Ranked full-text search with a trigram fallback for misspelled names"""
    words = search_terms(query)
    if not words:
        return []

    rows = store.search_case_rows(
        build_tsquery(words), " ".join(words), FUZZY_SIMILARITY_THRESHOLD, limit
    )
    results = [
        SearchResult(
            case=case_detail_from_row(row).summary(),
            text_match=bool(row.get('text_match')),
            rank=float(row.get('rank') or 0.0),
            similarity=float(row.get('similarity') or 0.0),
        )
        for row in rows
    ]
    results = [r for r in results if r.text_match or r.similarity > FUZZY_SIMILARITY_THRESHOLD]
    results.sort(key=lambda r: (not r.text_match, -r.rank if r.text_match else 0.0, -r.similarity))
    logger.debug(f"Search for {query!r} returned {len(results)} cases")
    return results[:limit]
