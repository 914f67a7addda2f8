from pymongo import MongoClient
from pymongo.errors import PyMongoError
import logging

logger = logging.getLogger(__name__)


class MongoRepo:
    """Holds the process MongoDB client and database handle.

    The app factory connects once and passes the database object to every
    repository; nothing else reaches for the connection.
    """
    _client = None
    _db = None

    @classmethod
    def connect(cls, mongo_uri: str, db_name: str, client=None):
        if client is None:
            logger.info("Connecting to MongoDB URI: %s, DB: %s", mongo_uri, db_name)
            client = MongoClient(mongo_uri, tz_aware=False)
        cls._client = client
        cls._db = client[db_name]
        return cls._db

    @classmethod
    def get_db(cls):
        if cls._db is None:
            raise RuntimeError('MongoDB is not connected; call MongoRepo.connect() first')
        return cls._db

    @classmethod
    def is_initialized(cls) -> bool:
        return cls._db is not None

    @classmethod
    def ping(cls) -> bool:
        if cls._client is None:
            return False
        try:
            cls._client.admin.command('ping')
        except PyMongoError as e:
            logger.warning("MongoDB ping failed: %s", e)
            return False
        return True

    @classmethod
    def reset(cls):
        cls._client = None
        cls._db = None


def get_collection(db, collection_name):
    """Get a collection from the database, creating it if it does not exist."""
    try:
        if collection_name not in db.list_collection_names():
            db.create_collection(collection_name)
            logger.info("Created '%s' collection in DB.", collection_name)
    except Exception as e:
        logger.warning("Error ensuring '%s' collection exists: %s", collection_name, e)
    return db[collection_name]
