"""Supabase database client"""
from supabase import create_client, Client
from config.settings import settings
import logging

logger = logging.getLogger(__name__)


def create_supabase_client() -> Client:
    """Build a Supabase client from settings.

    The service key bypasses row-level security, so every repository
    filters by ``user_id`` itself.
    """
    logger.info("Initializing Supabase client...")
    client = create_client(settings.SUPABASE_URL, settings.SUPABASE_KEY)
    logger.info("Supabase client initialized")
    return client
