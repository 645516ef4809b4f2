"""
Firebase Admin SDK initialization

Shared by token verification and the Firestore user store.
"""

import os
from typing import Optional

import firebase_admin
from firebase_admin import credentials

from config import settings
from utils.logger import logger

_firebase_app: Optional[firebase_admin.App] = None


def get_firebase_app() -> firebase_admin.App:
    """Lazy initialization of the Firebase Admin SDK"""
    global _firebase_app
    if _firebase_app is not None:
        return _firebase_app

    # Already initialized elsewhere in the process
    try:
        _firebase_app = firebase_admin.get_app()
        return _firebase_app
    except ValueError:
        pass

    cred_path = settings.GOOGLE_APPLICATION_CREDENTIALS or os.environ.get("GOOGLE_APPLICATION_CREDENTIALS")

    if cred_path and os.path.exists(cred_path):
        cred = credentials.Certificate(cred_path)
        _firebase_app = firebase_admin.initialize_app(cred)
    else:
        # Default credentials (works in GCP environments)
        logger.info("Firebase service account not found, using application default credentials")
        _firebase_app = firebase_admin.initialize_app(credentials.ApplicationDefault())

    return _firebase_app
