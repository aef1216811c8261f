"""
FastAPI dependencies for the session objects created in the app lifespan.
"""

from fastapi import Request

from cardkeeper.sync.notifications import NotificationFeed
from cardkeeper.sync.store import CollectionStore


def get_store(request: Request) -> CollectionStore:
    store: CollectionStore = request.app.state.store
    return store


def get_feed(request: Request) -> NotificationFeed:
    feed: NotificationFeed = request.app.state.feed
    return feed
