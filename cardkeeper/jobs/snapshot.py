"""
One-shot snapshot of the backend collections.

Loads every collection and card row once and logs per-collection totals.
Useful for checking backend connectivity and configuration.
"""

import asyncio
import logging

from cardkeeper.config import settings
from cardkeeper.remote.client import HttpRemoteStore, RemoteStoreClient
from cardkeeper.sync.cache import EntityCache
from cardkeeper.sync.reconciler import Reconciler

logger = logging.getLogger(__name__)


async def run_snapshot(remote: RemoteStoreClient | None = None) -> dict[int, int]:
    """
    Load one snapshot from the backend.

    Args:
        remote: Backend client. Built from settings when omitted.

    Returns:
        Dict mapping collection id to number of card copies it holds.
        Empty if the backend could not be reached.
    """
    owned = remote is None
    client: RemoteStoreClient = remote or HttpRemoteStore.from_settings(settings)
    cache = EntityCache()
    reconciler = Reconciler(client, cache, pending_keys=set)

    try:
        stats = await reconciler.refresh()
    finally:
        if owned and isinstance(client, HttpRemoteStore):
            await client.aclose()

    if stats is None:
        error = reconciler.last_error
        logger.error("Snapshot failed: %s", error.message if error else "unknown error")
        return {}

    totals: dict[int, int] = {}
    for collection in cache.collections():
        count = sum(card.quantity for card in cache.cards(collection.id))
        totals[collection.id] = count
        logger.info("%s (#%d): %d cards", collection.name, collection.id, count)

    logger.info(
        "Snapshot complete. %d collections, %d cards total",
        len(totals),
        sum(totals.values()),
    )
    return totals


def main() -> None:
    """CLI entry point for running a snapshot."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    asyncio.run(run_snapshot())


if __name__ == "__main__":
    main()
