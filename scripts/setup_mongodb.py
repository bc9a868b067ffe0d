#!/usr/bin/env python3
"""
MongoDB Setup Script

Prepares MongoDB for the conversation state store:
1. Test your MongoDB connection
2. Create the state collection and its indexes
3. Print the .env lines that switch the bot to MongoDB

Usage:
    python scripts/setup_mongodb.py
"""

import os
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from dotenv import load_dotenv
load_dotenv()

import logging

from config.settings import get_settings

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def print_banner():
    """Print setup banner."""
    print("\n" + "=" * 60)
    print("  🍃 MongoDB State Store Setup")
    print(f"  {get_settings().bot.store_name}")
    print("=" * 60 + "\n")


def get_mongodb_uri() -> str:
    """Get MongoDB URI from environment or user input."""
    uri = os.getenv("MONGODB_URI", "")

    if uri and "username:password" not in uri:
        return uri

    print("\n📝 MongoDB Connection URI")
    print("-" * 40)
    print("Format: mongodb+srv://<username>:<password>@<cluster>.mongodb.net/")
    print("   or:  mongodb://localhost:27017\n")

    return input("Enter your MongoDB URI: ").strip()


def test_connection(uri: str) -> bool:
    """Test MongoDB connection."""
    from pymongo import MongoClient
    from pymongo.errors import ConfigurationError, ServerSelectionTimeoutError

    print("\n🔌 Testing MongoDB Connection...")

    try:
        client = MongoClient(uri, serverSelectionTimeoutMS=10000)
        client.admin.command('ping')
        server_info = client.server_info()
        print("✅ Successfully connected to MongoDB!")
        print(f"   Server version: {server_info.get('version', 'unknown')}")
        return True

    except ServerSelectionTimeoutError:
        print("❌ Connection timeout. Check your URI and network.")
    except ConfigurationError as e:
        print(f"❌ Configuration error: {e}")
    except Exception as e:
        print(f"❌ Connection failed: {e}")
    return False


def setup_collection(uri: str, db_name: str, collection_name: str):
    """Create the state collection and its indexes."""
    from ferrebot.state_store import ConversationStateStore, MongoStateBackend

    print(f"\n📦 Setting up collection: {db_name}.{collection_name}")

    # The backend creates the unique user_id and last_interaction indexes on connect
    backend = MongoStateBackend(uri=uri, database=db_name, collection=collection_name)
    store = ConversationStateStore(backend=backend, config=get_settings().state_store)

    print(f"✅ Collection ready with {store.count()} conversations")
    return store


def print_env_lines(uri: str, db_name: str, collection_name: str):
    print("\n📝 Add these lines to your .env file:")
    print("-" * 40)
    print("STATE_STORE_PROVIDER=mongodb")
    print(f"MONGODB_URI={uri}")
    print(f"MONGODB_DATABASE={db_name}")
    print(f"MONGODB_STATE_COLLECTION={collection_name}")


def main():
    print_banner()

    config = get_settings().state_store
    uri = get_mongodb_uri()
    if not uri:
        print("❌ No URI given")
        sys.exit(1)

    if not test_connection(uri):
        sys.exit(1)

    setup_collection(uri, config.mongodb_database, config.mongodb_collection)
    print_env_lines(uri, config.mongodb_database, config.mongodb_collection)

    print("\n🎉 Setup complete!")


if __name__ == "__main__":
    main()
