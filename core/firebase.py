import json
import logging
import os

import firebase_admin
from dotenv import load_dotenv
from firebase_admin import auth as firebase_auth
from firebase_admin import credentials, firestore

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)

STORAGE_BUCKET = os.getenv("FIREBASE_STORAGE_BUCKET", "timetrack-nz.appspot.com")

_db = None


def initialize_firebase():
    """Initialize Firebase Admin SDK with production-ready credential handling"""

    if firebase_admin._apps:
        return

    options = {"storageBucket": STORAGE_BUCKET}

    # Method 1: Service Account Key from Environment Variable (Recommended for production)
    service_account_key_json = os.getenv("FIREBASE_SERVICE_ACCOUNT_KEY")

    if service_account_key_json:
        try:
            # Parse the JSON string from environment variable
            service_account_info = json.loads(service_account_key_json)
            cred = credentials.Certificate(service_account_info)
            firebase_admin.initialize_app(cred, options)
            logger.info("Firebase Admin SDK initialized with Service Account Key from environment variable.")
            return
        except (json.JSONDecodeError, ValueError) as e:
            logger.error(f"Error parsing FIREBASE_SERVICE_ACCOUNT_KEY: {e}")

    # Method 2: Service Account Key File (for local development only)
    service_account_key_path = os.getenv("FIREBASE_SERVICE_ACCOUNT_KEY_PATH")
    if service_account_key_path and os.path.exists(service_account_key_path):
        cred = credentials.Certificate(service_account_key_path)
        firebase_admin.initialize_app(cred, options)
        logger.info("Firebase Admin SDK initialized with Service Account Key from file path.")
        return

    # Method 3: GOOGLE_APPLICATION_CREDENTIALS / Application Default Credentials
    firebase_admin.initialize_app(options=options)
    logger.info("Firebase Admin SDK initialized with Application Default Credentials.")


def get_db():
    """Firestore client, initializing the Admin SDK on first use."""
    global _db
    if _db is None:
        initialize_firebase()
        _db = firestore.client()
    return _db


def verify_id_token(token: str) -> dict:
    initialize_firebase()
    return firebase_auth.verify_id_token(token)
