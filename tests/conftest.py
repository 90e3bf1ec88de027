# tests/conftest.py
import logging
import os
import uuid

import mongomock
import pytest
from pymongo import MongoClient
from pymongo.errors import ConnectionFailure, PyMongoError

from docmapper import DocMapper, Mapper
from tests.models import (
    Address,
    Animal,
    Article,
    Author,
    Bicycle,
    Book,
    Cat,
    Dog,
    Garage,
    Hooked,
    Location,
    Member,
    Note,
    Shelf,
    User,
    Zoo,
)

# Silence verbose loggers
logging.getLogger("pymongo").setLevel(logging.ERROR)

# --- Constants ---
MONGO_URI = os.getenv("TEST_MONGO_URI", "mongodb://localhost:27017")

MAPPED_MODELS = [
    Address,
    User,
    Author,
    Book,
    Shelf,
    Animal,
    Dog,
    Cat,
    Zoo,
    Bicycle,
    Garage,
    Hooked,
    Location,
    Article,
    Note,
    Member,
]


# --- Availability Checks ---
def is_mongodb_available():
    """Check if a real MongoDB server is reachable (basic check)."""
    try:
        client = MongoClient(MONGO_URI, serverSelectionTimeoutMS=1000)
        client.admin.command("ping")
        client.close()
        return True
    except ConnectionFailure:
        logging.warning(f"MongoDB not found or not responsive at {MONGO_URI}. Skipping server tests.")
        return False
    except PyMongoError as e:
        logging.warning(f"Error checking MongoDB connection at {MONGO_URI}: {e}. Skipping server tests.")
        return False


requires_mongodb = pytest.mark.skipif(not is_mongodb_available(), reason="MongoDB server not available")


# --- Fixtures ---
@pytest.fixture
def mapper():
    """A fresh mapper with the test models mapped."""
    m = Mapper()
    m.map(*MAPPED_MODELS)
    return m


@pytest.fixture
def docmapper(mapper):
    return DocMapper(mapper=mapper)


@pytest.fixture
def mongo_client():
    client = mongomock.MongoClient()
    yield client
    client.close()


@pytest.fixture
def datastore(docmapper, mongo_client):
    """A datastore backed by an in-memory mongomock database."""
    return docmapper.create_datastore(mongo_client, "docmapper_test")


@pytest.fixture
def server_datastore(docmapper):
    """A datastore on a real server, in a throw-away database."""
    client = MongoClient(MONGO_URI, serverSelectionTimeoutMS=2000)
    db_name = f"docmapper_test_{uuid.uuid4().hex[:8]}"
    yield docmapper.create_datastore(client, db_name)
    client.drop_database(db_name)
    client.close()
