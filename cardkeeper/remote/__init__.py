from cardkeeper.remote.client import HttpRemoteStore, RemoteStoreClient

__all__ = ["HttpRemoteStore", "RemoteStoreClient"]
