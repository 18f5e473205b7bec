"""Read-only access to user profile data the scheduler needs"""
from typing import Optional
from dateutil import tz
from supabase import Client
from app.config import settings

USER_PROFILES_TABLE = "user_profiles"


def resolve_timezone(name: Optional[str]):
    """Return a tzinfo for an IANA name, falling back to the configured default"""
    zone = tz.gettz(name) if name else None
    if zone is None:
        zone = tz.gettz(settings.DEFAULT_USER_TIMEZONE) or tz.UTC
    return zone


class UserDirectory:
    """Looks up per-user settings from user_profiles"""

    def __init__(self, client: Client):
        self.client = client

    def get_timezone_name(self, user_id: str) -> Optional[str]:
        response = (
            self.client.table(USER_PROFILES_TABLE)
            .select("timezone")
            .eq("user_id", user_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return response.data[0].get("timezone")

    def get_timezone(self, user_id: str):
        return resolve_timezone(self.get_timezone_name(user_id))
