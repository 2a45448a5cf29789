# client/sync.py
import logging
from typing import Any, Dict, Iterable

from client.api_client import RemoteAPIClient
from client.errors import RemoteError
from client.record_store import RecordStore
from db.schemas import SYNC_COLLECTIONS, utc_now
from logging_config import LogContext

logger = logging.getLogger(__name__)


class SyncEngine:
    """
    Pushes local records to the backend as natural-key upserts.

    One request per collection, parents first, so a failure in one
    collection never stops the others. Image analyses are not synced: their
    local copies carry no image data.
    """

    def __init__(self, api: RemoteAPIClient, records: RecordStore, collections: Iterable[str] = SYNC_COLLECTIONS):
        self.api = api
        self.records = records
        self.collections = tuple(collections)

    def sync_collection(self, collection: str, rows: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
        if not rows:
            return {"success": True, "records": 0, "inserted": 0, "modified": 0, "matched": 0}

        try:
            with LogContext(logger, f"Syncing {len(rows)} {collection}"):
                body = self.api.sync({collection: rows})
                if not body.get("success"):
                    raise RemoteError(body.get("error") or f"sync of {collection} rejected")
                outcome = body["data"]["collections"][collection]
        except (RemoteError, KeyError, TypeError) as e:
            return {"success": False, "records": len(rows), "error": str(e)}

        return {
            "success": True,
            "records": len(rows),
            "inserted": outcome.get("inserted", 0),
            "modified": outcome.get("modified", 0),
            "matched": outcome.get("matched", 0),
        }

    def sync(self) -> Dict[str, Any]:
        """
        Returns an envelope whose `data` maps each collection to its own
        outcome; `success` is true only if every collection synced.
        """
        export = self.records.export()
        results = {
            collection: self.sync_collection(collection, export.get(collection) or {})
            for collection in self.collections
        }

        failed = [name for name, result in results.items() if not result["success"]]
        if failed:
            logger.warning(f"Sync incomplete, failed collections: {', '.join(failed)}")
            return {"success": False, "error": f"Sync failed for: {', '.join(failed)}", "data": results}

        logger.info("Local data synchronized successfully")
        return {"success": True, "data": results, "timestamp": utc_now()}
