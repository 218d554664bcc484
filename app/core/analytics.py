"""PostHog telemetry for retrieval and agent events.

Disabled unless POSTHOG_API_KEY is configured. Callers never see an
exception from here; delivery problems are logged and dropped.
"""

from typing import Any

from posthog import Posthog

from app.core.config import get_settings
from app.core.logging import get_logger

logger = get_logger(__name__)

# None until first use; False once we know telemetry is off
_client: Posthog | None | bool = None


def _telemetry_client() -> Posthog | None:
    global _client
    if _client is None:
        try:
            settings = get_settings()
            if settings.POSTHOG_API_KEY:
                _client = Posthog(settings.POSTHOG_API_KEY, host=settings.POSTHOG_HOST)
                logger.info(f"Telemetry enabled, host={settings.POSTHOG_HOST}")
            else:
                logger.debug("POSTHOG_API_KEY unset, telemetry off")
                _client = False
        except Exception as e:
            logger.warning(f"PostHog client setup failed, telemetry off: {e}")
            _client = False
    return _client or None


def track_server_event(
    distinct_id: str,
    event: str,
    properties: dict[str, Any] | None = None,
) -> None:
    """Queue one server-side event.

    Args:
        distinct_id: Acting user id, or `project:<id>` for work with no user
        event: Event name such as `rag_retrieval` or `agent_tool_executed`
        properties: Flat dict of event properties
    """
    client = _telemetry_client()
    if client is None:
        return
    try:
        client.capture(event=event, distinct_id=distinct_id, properties=dict(properties or {}))
    except Exception as e:
        logger.warning(f"Dropped telemetry event {event}: {e}")


def shutdown_analytics() -> None:
    """Flush queued events; called when the app stops."""
    global _client
    client = _client or None
    _client = None
    if client is None:
        return
    try:
        client.shutdown()
    except Exception as e:
        logger.warning(f"Telemetry flush failed: {e}")
