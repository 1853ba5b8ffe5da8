"""Firebase Admin SDK initialization."""

import json
import os

import firebase_admin
from firebase_admin import credentials
from structlog import get_logger

logger = get_logger(__name__)

_firebase_app: firebase_admin.App | None = None


def initialize_firebase(
    firebase_credentials_path: str | None = None, firebase_config_json: str | None = None
) -> firebase_admin.App:
    """
    Initialize Firebase Admin SDK for Cloud Messaging.

    Args:
        firebase_credentials_path: Optional path to service account JSON file.
        firebase_config_json: Optional raw JSON string of service account.

    Looks for Firebase credentials in order:
    1. FIREBASE_CONFIG_JSON contents
    2. FIREBASE_CREDENTIALS_PATH file
    3. Default application credentials

    Returns:
        The initialized Firebase app
    """
    global _firebase_app

    if _firebase_app is not None:
        logger.info("firebase_already_initialized")
        return _firebase_app

    cred = None
    if firebase_config_json:
        logger.info("firebase_credentials_from_json")
        cred = credentials.Certificate(json.loads(firebase_config_json))
    elif firebase_credentials_path and os.path.exists(firebase_credentials_path):
        logger.info("firebase_credentials_from_file", path=firebase_credentials_path)
        cred = credentials.Certificate(firebase_credentials_path)

    try:
        if cred:
            _firebase_app = firebase_admin.initialize_app(cred)
        else:
            # Last resort: Application Default Credentials
            _firebase_app = firebase_admin.initialize_app()
            logger.info("firebase_default_credentials")
    except (ValueError, OSError) as e:
        logger.error("firebase_initialization_failed", error=str(e))
        raise

    return _firebase_app


def is_firebase_initialized() -> bool:
    """Check whether push notifications can be sent."""
    return _firebase_app is not None
