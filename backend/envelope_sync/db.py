"""
Database client configuration.
Uses Supabase (PostgREST tables + Storage) as the record store backend.
"""

import os
from supabase import create_client, Client
from dotenv import load_dotenv

load_dotenv()


def create_admin_client() -> Client:
    """
    Create a service-level Supabase client (bypasses RLS).

    The pipeline writes log records, notes and files on behalf of the signing
    service, so it always needs the service key.

    Raises ValueError when SUPABASE_URL or SUPABASE_SERVICE_KEY is missing.
    """
    supabase_url = os.getenv("SUPABASE_URL")
    service_key = os.getenv("SUPABASE_SERVICE_KEY")

    if not supabase_url or not service_key:
        raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set in environment variables")

    return create_client(supabase_url, service_key)


def storage_bucket() -> str:
    """Storage bucket holding committed documents and staged upload blocks."""
    return os.getenv("SUPABASE_BUCKET", "").strip() or "signed-documents"
