"""
Database setup: schema, constitution text, and optional initial seeding.

Usage:
    python database_init.py               # schema + constitution
    python database_init.py 2022 2023     # ...then seed those terms and their justices
"""
import json
import logging
import os
import sys
from typing import List, Optional

from case_data import CaseStore
from case_records import ConstitutionSection
from case_sync import backfill_justices, backfill_terms, discover_justices
from oyez_client import OyezClient

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

DATA_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'data')
DEFAULT_CONSTITUTION_PATH = os.path.join(DATA_DIR, 'constitution_sections.json')
DEFAULT_JUSTICES_PATH = os.path.join(DATA_DIR, 'justice_identifiers.json')


def load_constitution(path: str) -> List[ConstitutionSection]:
    with open(path, encoding='utf-8') as f:
        raw = json.load(f)
    sections = []
    for position, item in enumerate(raw):
        section = ConstitutionSection.from_json(item)
        if section is None:
            logger.warning(f"Skipping malformed constitution entry #{position}")
            continue
        if not section.sort_order:
            section.sort_order = position
        sections.append(section)
    return sections


def load_justice_identifiers(path: str) -> List[str]:
    if not os.path.exists(path):
        return []
    with open(path, encoding='utf-8') as f:
        return [str(identifier) for identifier in json.load(f)]


def main(terms: Optional[List[str]] = None) -> None:
    store = CaseStore.from_env().open()
    try:
        # Initialize database schema
        store.initialize_database()
        logger.info("Database schema initialized")

        constitution_path = os.environ.get('CONSTITUTION_DATA', DEFAULT_CONSTITUTION_PATH)
        store.seed_constitution(load_constitution(constitution_path))
        logger.info("Constitution sections seeded")

        if terms:
            client = OyezClient.from_env()
            try:
                result = backfill_terms(store, client, terms)
                logger.info(
                    f"Seeded terms {', '.join(terms)}: {result.inserted} inserted, "
                    f"{result.updated} updated, {result.skipped} already decided"
                )
                discover_justices(store, client, terms)
                backfill_justices(store, client, load_justice_identifiers(DEFAULT_JUSTICES_PATH))
            finally:
                client.close()

    except Exception as e:
        logger.error(f"Error during initialization: {str(e)}")
        raise
    finally:
        store.close()


if __name__ == "__main__":
    main(sys.argv[1:])
