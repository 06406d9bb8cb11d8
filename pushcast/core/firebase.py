import logging

import firebase_admin
from firebase_admin import credentials

from pushcast.config import Settings

logger = logging.getLogger(__name__)


class StartupConfigurationError(RuntimeError):
  """Raised when the process cannot start with the configured credentials."""


def _build_credentials(settings: Settings) -> credentials.Base | None:
  if settings.firebase_service_account_json_path:
    return credentials.Certificate(settings.firebase_service_account_json_path)

  if settings.firebase_project_id and settings.firebase_client_email and settings.firebase_private_key:
    # Private keys stored in env files carry literal "\n" sequences.
    private_key = settings.firebase_private_key.replace("\\n", "\n")
    return credentials.Certificate(
      {
        "type": "service_account",
        "project_id": settings.firebase_project_id,
        "client_email": settings.firebase_client_email,
        "private_key": private_key,
        "token_uri": "https://oauth2.googleapis.com/token",
      }
    )

  return None


def initialize_firebase(settings: Settings) -> firebase_admin.App | None:
  """Initializes the Firebase Admin SDK used for token push."""
  if not settings.token_push_enabled:
    logger.info("Token push disabled; Firebase Admin SDK not initialized.")
    return None

  if firebase_admin._apps:
    return firebase_admin.get_app()

  try:
    cred = _build_credentials(settings)
  except (ValueError, OSError) as e:
    raise StartupConfigurationError(f"Firebase credentials are invalid: {e}") from e

  if cred is None:
    raise StartupConfigurationError("Token push is enabled but no Firebase credentials are configured (set FIREBASE_SERVICE_ACCOUNT_JSON_PATH or FIREBASE_PROJECT_ID, FIREBASE_CLIENT_EMAIL and FIREBASE_PRIVATE_KEY).")

  options = {"projectId": settings.firebase_project_id} if settings.firebase_project_id else None
  app = firebase_admin.initialize_app(cred, options)
  logger.info("Firebase Admin SDK initialized successfully.")
  return app
