"""Supabase clients: the shared service-role client and anon-key clients."""

from supabase import create_client, Client

from app.config import Settings, settings as default_settings
from app.errors import ConfigurationError

_service_client: Client | None = None


def get_supabase(settings: Settings | None = None) -> Client:
    """Service-role client shared by the job table, catalog and bucket."""
    global _service_client
    if _service_client is None:
        settings = settings or default_settings
        if not settings.supabase_url or not settings.supabase_service_role_key:
            raise ConfigurationError(
                "SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set"
            )
        _service_client = create_client(
            settings.supabase_url,
            settings.supabase_service_role_key,
        )
    return _service_client


def anon_client(settings: Settings | None = None) -> Client:
    """Client on the anon key, used to resolve user access tokens."""
    settings = settings or default_settings
    if not settings.supabase_url or not settings.supabase_anon_key:
        raise ConfigurationError("SUPABASE_URL and SUPABASE_ANON_KEY must be set")
    return create_client(settings.supabase_url, settings.supabase_anon_key)
