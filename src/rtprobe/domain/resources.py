"""Database objects the probe expects on the Supabase side.

The watched table receives one probe record per change-notification attempt;
its token column carries the ``pc_...`` correlation value. The two functions
inspect and repair membership of that table in the realtime publication.
"""

from __future__ import annotations

from typing import Final

DEFAULT_WATCHED_SCHEMA: Final = "public"
DEFAULT_WATCHED_TABLE: Final = "realtime_diag"
DEFAULT_TOKEN_COLUMN: Final = "test_id"

REALTIME_PUBLICATION: Final = "supabase_realtime"
DEFAULT_REMEDIATION_RPC: Final = "ensure_realtime_publication"
DEFAULT_PUBLICATION_STATUS_RPC: Final = "check_realtime_publication_status"

__all__ = [
    "DEFAULT_WATCHED_SCHEMA",
    "DEFAULT_WATCHED_TABLE",
    "DEFAULT_TOKEN_COLUMN",
    "REALTIME_PUBLICATION",
    "DEFAULT_REMEDIATION_RPC",
    "DEFAULT_PUBLICATION_STATUS_RPC",
]
