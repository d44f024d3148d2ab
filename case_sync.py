"""
Synchronization of the local case database with Oyez.

A run processes the previous term, then the current term, then discovers any
justices referenced by vote data that are not stored yet. Decided cases are
locked: once a stored row has is_decided set it is never fetched again.
Everything else is refetched on every run, so a run can be aborted at any
point and simply started again.
"""
import logging
import time
from dataclasses import asdict, dataclass
from datetime import date
from typing import Dict, Iterable, List, Optional

from case_data import CaseStore, StorageError
from case_records import justice_identifier, parse_case_detail, parse_case_list_item, parse_justice
from oyez_client import OyezClient, UpstreamFetchError
from term_utils import current_term, previous_term

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    justices_added: int = 0

    def __add__(self, other: "SyncResult") -> "SyncResult":
        return SyncResult(
            inserted=self.inserted + other.inserted,
            updated=self.updated + other.updated,
            skipped=self.skipped + other.skipped,
            failed=self.failed + other.failed,
            justices_added=self.justices_added + other.justices_added,
        )

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def sync_term(store: CaseStore, client: OyezClient, term: str) -> SyncResult:
    """Bring one term's cases up to date with the upstream listing"""
    logger.info(f"[{term}] Fetching case list from Oyez API...")
    result = SyncResult()
    try:
        listing = client.list_term_cases(term)
    except UpstreamFetchError as e:
        logger.error(f"[{term}] Failed to fetch case list: {str(e)}")
        return result

    logger.info(f"[{term}] Found {len(listing)} cases on Oyez")

    for raw_item in listing:
        item = parse_case_list_item(raw_item)
        docket = item.docket_number
        if not docket:
            logger.warning(f"[{term}] Skipping listed case without a docket number: {item.name}")
            result.failed += 1
            continue

        try:
            state = store.case_state(term, docket)
            if state:
                result.skipped += 1
                continue

            href = item.href or client.case_url(term, docket)
            try:
                raw_detail = client.fetch_case(href)
            except UpstreamFetchError as e:
                logger.warning(f"[{term}] Skipping {docket} - detail fetch failed: {str(e)}")
                result.failed += 1
                continue

            detail = parse_case_detail(raw_detail, term=term, docket_number=docket)
            upstream_key = (str(raw_detail.get('term') or term), str(raw_detail.get('docket_number') or docket))
            if upstream_key != (term, docket):
                logger.warning(
                    f"[{term}] Detail for {docket} reports {upstream_key[0]}/{upstream_key[1]}; "
                    f"keeping the listing's identity"
                )

            store.upsert_case(detail)
        except StorageError as e:
            logger.error(f"[{term}] Storage error on {docket}: {str(e)}")
            result.failed += 1
            continue

        if state is None:
            result.inserted += 1
        else:
            result.updated += 1

    logger.info(
        f"[{term}] Done - inserted: {result.inserted}, updated: {result.updated}, "
        f"skipped: {result.skipped}, failed: {result.failed}"
    )
    return result


def _fetch_and_store_justice(store: CaseStore, client: OyezClient, identifier: str, href: str) -> bool:
    try:
        data = client.fetch_justice(href)
    except UpstreamFetchError as e:
        logger.warning(f"Skipping justice {identifier} - {str(e)}")
        return False
    try:
        store.upsert_justice(parse_justice(data, identifier))
    except StorageError as e:
        logger.error(f"Storage error on justice {identifier}: {str(e)}")
        return False
    return True


def discover_justices(store: CaseStore, client: OyezClient, terms: Iterable[str]) -> int:
    """Fetch profiles for justices that vote in these terms but are not stored"""
    terms = list(terms)
    logger.info(f"Syncing justices for terms {', '.join(terms)}")
    try:
        vote_rows = store.vote_rows(terms)
        existing_ids = store.justice_ids()
    except StorageError as e:
        logger.error(f"Could not read vote data for justice discovery: {str(e)}")
        return 0

    hrefs: Dict[str, str] = {}
    for decisions in vote_rows:
        if not isinstance(decisions, list):
            continue
        for decision in decisions:
            votes = decision.get('votes') if isinstance(decision, dict) else None
            if not isinstance(votes, list):
                continue
            for vote in votes:
                member = vote.get('member') if isinstance(vote, dict) else None
                href = member.get('href') if isinstance(member, dict) else None
                identifier = justice_identifier(href)
                if identifier and identifier not in hrefs:
                    hrefs[identifier] = href

    fetched = 0
    for identifier, href in hrefs.items():
        if identifier in existing_ids:
            continue
        if _fetch_and_store_justice(store, client, identifier, href):
            fetched += 1

    logger.info(f"Justices: {fetched} new, {len(hrefs) - fetched} already existed or failed")
    return fetched


def backfill_justices(store: CaseStore, client: OyezClient, identifiers: Iterable[str]) -> int:
    """Fetch the given justice profiles that are not stored yet"""
    existing_ids = store.justice_ids()
    fetched = 0
    for identifier in identifiers:
        if identifier in existing_ids:
            continue
        if _fetch_and_store_justice(store, client, identifier, client.justice_url(identifier)):
            fetched += 1
    logger.info(f"Backfilled {fetched} justices")
    return fetched


def backfill_terms(store: CaseStore, client: OyezClient, terms: Iterable[str]) -> SyncResult:
    """Seed an explicit list of terms, e.g. when setting up a new database"""
    total = SyncResult()
    for term in terms:
        total = total + sync_term(store, client, term)
    return total


def run_sync(store: CaseStore, client: OyezClient, today: Optional[date] = None) -> SyncResult:
    """One full synchronization pass: previous term, current term, justices"""
    started = time.time()
    term = current_term(today)
    # Late-session opinions can post after the term has nominally closed
    prior = previous_term(term)
    terms = [prior, term]
    logger.info(f"Current term: {term}, Previous term: {prior}")

    run_id = None
    try:
        run_id = store.start_sync_run(terms)
    except StorageError as e:
        logger.warning(f"Could not record sync run start: {str(e)}")

    status, message = 'completed', None
    total = SyncResult()
    try:
        for t in terms:
            total = total + sync_term(store, client, t)
        total.justices_added = discover_justices(store, client, terms)
    except Exception as e:
        status, message = 'error', str(e)
        raise
    finally:
        duration = time.time() - started
        if message is None:
            message = (
                f"{total.inserted} new, {total.updated} updated, "
                f"{total.skipped} skipped (decided), {total.failed} failed in {duration:.1f}s"
            )
        if run_id is not None:
            try:
                store.finish_sync_run(run_id, status, total.to_dict(), message)
            except StorageError as e:
                logger.warning(f"Could not record sync run result: {str(e)}")

    logger.info(f"Sync complete: {message}")
    return total
