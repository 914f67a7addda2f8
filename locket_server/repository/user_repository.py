"""Read-only user directory over the ``users`` collection.

Users are registered elsewhere; messaging only needs to know that an id
exists and what to call it.
"""
import logging
from typing import Optional, Dict, Any, List, Iterable

from bson import ObjectId

from locket_server.repository.mongo_helper import get_collection

logger = logging.getLogger(__name__)


def _id_candidates(user_ids: Iterable[str]) -> List[Any]:
    # Users may be keyed by ObjectId or by an opaque string id.
    out: List[Any] = []
    for uid in user_ids:
        out.append(uid)
        if ObjectId.is_valid(uid):
            out.append(ObjectId(uid))
    return out


def _profile(doc: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'id': str(doc['_id']),
        'username': doc.get('username'),
        'avatarUrl': doc.get('avatar_url') or doc.get('avatarUrl'),
    }


class UserRepository:

    def __init__(self, db, collection_name="users"):
        self.collection_name = collection_name
        self.collection = get_collection(db, collection_name)

    def get(self, user_id: str) -> Optional[Dict[str, Any]]:
        doc = self.collection.find_one({'_id': {'$in': _id_candidates([user_id])}})
        return _profile(doc) if doc else None

    def get_many(self, user_ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
        ids = list(dict.fromkeys(user_ids))
        if not ids:
            return {}
        cursor = self.collection.find({'_id': {'$in': _id_candidates(ids)}})
        return {str(d['_id']): _profile(d) for d in cursor}

    def usernames(self, user_ids: Iterable[str]) -> Dict[str, str]:
        return {uid: p.get('username') or uid for uid, p in self.get_many(user_ids).items()}

    def missing(self, user_ids: Iterable[str]) -> List[str]:
        """Ids from ``user_ids`` that are not in the directory."""
        ids = list(dict.fromkeys(user_ids))
        found = self.get_many(ids)
        return [uid for uid in ids if uid not in found]
