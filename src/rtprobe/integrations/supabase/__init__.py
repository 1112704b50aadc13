"""Supabase Realtime and PostgREST adapter for the diagnostics engine."""

from rtprobe.integrations.supabase.client import (
    SupabaseRealtimeClient,
    build_ssl_context,
    create_supabase_client,
)
from rtprobe.integrations.supabase.realtime import PhoenixChannel, RealtimeSocket, build_endpoint
from rtprobe.integrations.supabase.rest import SupabaseRestClient

__all__ = [
    "SupabaseRealtimeClient",
    "SupabaseRestClient",
    "RealtimeSocket",
    "PhoenixChannel",
    "build_endpoint",
    "build_ssl_context",
    "create_supabase_client",
]
