import logging
import os
from typing import Any

from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.errors import ServerSelectionTimeoutError
from pymongo.server_api import ServerApi

logger = logging.getLogger(__name__)

_client: MongoClient | None = None


def connect(timeout_ms: int = 5000) -> Any:
    global _client
    uri = os.getenv("MONGO_URI")
    db_name = os.getenv("MONGO_DB")

    if not uri:
        raise RuntimeError("MONGO_URI environment variable is not set")
    if not db_name:
        raise RuntimeError("MONGO_DB environment variable is not set")

    if _client is None:
        _client = MongoClient(
            uri,
            tz_aware=True,
            serverSelectionTimeoutMS=timeout_ms,
            server_api=ServerApi('1')
        )
        try:
            _client.admin.command("ping")
        except ServerSelectionTimeoutError as exc:
            _client = None
            raise RuntimeError("Unable to connect to MongoDB") from exc
        logger.info("Connected to MongoDB database %s", db_name)

    db = _client[db_name]
    ensure_indexes(db)
    return db


def ensure_indexes(db: Any) -> None:
    db.problems.create_index([("created_at", DESCENDING)])
    db.solutions.create_index([("problem_id", ASCENDING)])
    db.solution_steps.create_index([("solution_id", ASCENDING), ("step_number", ASCENDING)])
    db.visuals.create_index([("problem_id", ASCENDING), ("visual_type", ASCENDING)])
    db.conversations.create_index([("problem_id", ASCENDING), ("created_at", DESCENDING)])
    db.messages.create_index([("conversation_id", ASCENDING), ("created_at", ASCENDING)])
