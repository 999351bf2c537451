# Database module for SkyAlert
# Contains Supabase client and database utilities

from .supabase_client import SupabaseDBClient

__all__ = ["SupabaseDBClient"]
