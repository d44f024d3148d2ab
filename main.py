"""Scheduled synchronization job: one full pass, then exit"""
import logging
import sys

from case_data import CaseStore, StorageError
from case_sync import run_sync
from oyez_client import OyezClient

logger = logging.getLogger(__name__)


def main() -> int:
    """Run one sync pass; non-zero only when storage cannot be set up"""
    logger.info("=== SCOTUS sync job started ===")
    try:
        store = CaseStore.from_env().open()
    except StorageError as e:
        logger.error(f"Cannot open case database: {str(e)}")
        return 1

    client = OyezClient.from_env()
    try:
        result = run_sync(store, client)
    except StorageError as e:
        logger.error(f"Sync aborted by storage failure: {str(e)}")
        return 1
    finally:
        client.close()
        store.close()

    logger.info(
        f"Total: {result.inserted} new, {result.updated} updated, "
        f"{result.skipped} skipped (decided), {result.failed} failed, "
        f"{result.justices_added} justices added"
    )
    return 0


def run() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        logger.info("Sync interrupted by user")
        sys.exit(130)
    except Exception as e:
        logger.error(f"Unexpected error: {str(e)}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    run()
