"""Supabase database client initialization"""
from supabase import create_client, Client
from app.config import settings
from app.exceptions import StoreConfigurationError
from typing import Optional

# Lazy initialization - clients will be created on first access
_supabase_client: Optional[Client] = None
_supabase_public_client: Optional[Client] = None

PLACEHOLDER_VALUES = (
    "your_supabase_project_url",
    "your_supabase_anon_key",
    "your_supabase_service_role_key",
)


def _validate_supabase_config():
    """Validate that Supabase configuration is present and not using placeholder values"""
    errors = []

    if settings.SUPABASE_URL in PLACEHOLDER_VALUES or not settings.SUPABASE_URL.startswith(('http://', 'https://')):
        errors.append("SUPABASE_URL")

    if settings.SUPABASE_KEY in PLACEHOLDER_VALUES or len(settings.SUPABASE_KEY) < 20:
        errors.append("SUPABASE_KEY")

    if settings.SUPABASE_SERVICE_ROLE_KEY in PLACEHOLDER_VALUES or len(settings.SUPABASE_SERVICE_ROLE_KEY) < 20:
        errors.append("SUPABASE_SERVICE_ROLE_KEY")

    if errors:
        raise StoreConfigurationError(
            "Supabase configuration is incomplete. The following environment variables need to be configured:\n"
            f"  - {', '.join(errors)}\n\n"
            "The nudge store needs the service role key because the scheduler updates nudges across users."
        )


def get_supabase() -> Client:
    """Get or create the Supabase service role client (used by the nudge store)"""
    global _supabase_client
    if _supabase_client is None:
        _validate_supabase_config()
        _supabase_client = create_client(
            settings.SUPABASE_URL,
            settings.SUPABASE_SERVICE_ROLE_KEY
        )
    return _supabase_client


def get_supabase_public() -> Client:
    """Get or create the Supabase public (anon key) client, used for JWT validation"""
    global _supabase_public_client
    if _supabase_public_client is None:
        _validate_supabase_config()
        _supabase_public_client = create_client(
            settings.SUPABASE_URL,
            settings.SUPABASE_KEY
        )
    return _supabase_public_client
