"""Storage adapters: the SQLAlchemy board store."""

from app.adapters.board_store import ReportCapabilities, detect_capabilities, ensure_schema, session_scope

__all__ = ["ReportCapabilities", "detect_capabilities", "ensure_schema", "session_scope"]
