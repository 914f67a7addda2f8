"""Create the indexes used by the messaging queries.

Usage:
    python scripts/add_indexes.py

Connection settings come from config (MONGO_URI / DB_NAME override the YAML).
"""
import logging
import os
import sys

from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import config
from locket_server.repository.mongo_helper import MongoRepo

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

INDEXES = {
    'messages': [
        ([('conversation_id', ASCENDING), ('created_at', DESCENDING), ('_id', DESCENDING)], {}),
        ([('thread_info.parent_message_id', ASCENDING), ('created_at', ASCENDING)], {'sparse': True}),
        ([('conversation_id', ASCENDING), ('sender_id', ASCENDING), ('status', ASCENDING)], {}),
        ([('text', 'text')], {'default_language': 'none'}),
    ],
    'conversations': [
        ([('participants.user_id', ASCENDING), ('is_active', ASCENDING), ('updated_at', DESCENDING)], {}),
    ],
    'notification': [
        ([('user_id', ASCENDING), ('read', ASCENDING), ('created_at', DESCENDING)], {}),
    ],
}


def create_index_safe(coll, index_spec, **kwargs) -> bool:
    """Create an index, logging instead of failing when it cannot be built."""
    try:
        index_name = coll.create_index(index_spec, **kwargs)
        logger.info('  Created index: %s', index_name)
        return True
    except PyMongoError as e:
        logger.error('  Error creating index %s: %s', index_spec, e)
        return False


def main() -> int:
    db = MongoRepo.connect(config.MONGO_URI, config.DB_NAME)
    failures = 0
    for collection_name, specs in INDEXES.items():
        logger.info('%s: adding %d index(es)', collection_name, len(specs))
        for spec, options in specs:
            if not create_index_safe(db[collection_name], spec, **options):
                failures += 1
    logger.info('Done (%d failure(s))', failures)
    return 1 if failures else 0


if __name__ == '__main__':
    sys.exit(main())
