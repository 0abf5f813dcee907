# coding: utf-8
"""
PostHog Analytics Service for Product Analytics

Tracks key events:
- Subscription lifecycle (created, invite completed, cancelled, expired)
- Payments (checkout started, paid)
"""
from typing import Dict, Any, Optional

from loguru import logger
from posthog import Posthog

from config.config import POSTHOG_API_KEY, POSTHOG_HOST


class PostHogService:
    """
    Product analytics service using PostHog

    Disabled (no-op) when POSTHOG_API_KEY is not configured.
    """

    def __init__(self, api_key: Optional[str] = None, host: Optional[str] = None):
        self.enabled = False
        self.client = None

        api_key = api_key if api_key is not None else POSTHOG_API_KEY
        host = host or POSTHOG_HOST

        if not api_key:
            logger.warning("POSTHOG_API_KEY not set. Analytics disabled.")
            return

        try:
            self.client = Posthog(project_api_key=api_key, host=host)
            self.enabled = True
            logger.info(f"PostHog analytics initialized: {host}")
        except Exception as e:
            logger.error(f"Failed to initialize PostHog: {e}")

    def track(
        self,
        user_id: str,
        event: str,
        properties: Optional[Dict[str, Any]] = None
    ) -> None:
        """
        Track event

        Args:
            user_id: User ID (distinct id)
            event: Event name (e.g., "subscription_updated")
            properties: Event properties (optional)
        """
        if not self.enabled:
            return

        try:
            self.client.capture(
                distinct_id=str(user_id),
                event=event,
                properties=properties or {}
            )
            logger.debug(f"Tracked: {event} for user {user_id}")
        except Exception as e:
            logger.error(f"PostHog track error: {e}")

    def shutdown(self) -> None:
        """Shutdown PostHog client (flush pending events)"""
        if self.enabled and self.client:
            try:
                self.client.shutdown()
                logger.info("PostHog shutdown complete")
            except Exception as e:
                logger.error(f"PostHog shutdown error: {e}")


# Global instance
_posthog_service: Optional[PostHogService] = None


def get_posthog_service() -> PostHogService:
    """Get or create PostHog service singleton"""
    global _posthog_service
    if _posthog_service is None:
        _posthog_service = PostHogService()
    return _posthog_service


# ============================================================================
# EVENT TRACKING HELPERS
# ============================================================================

def track_subscriptions_created(user_id: str, count: int, periods: list):
    get_posthog_service().track(user_id, "subscriptions_created", {
        "count": count,
        "periods": periods,
    })


def track_subscription_updated(user_id: str, status: str, invite_status: str, invite_completed: bool):
    """Track subscription status / invite changes"""
    get_posthog_service().track(user_id, "subscription_updated", {
        "status": status,
        "invite_status": invite_status,
        "invite_completed": invite_completed,
    })


def track_payment_started(user_id: str, amount: float, network: str, items: int):
    """Track checkout creation"""
    get_posthog_service().track(user_id, "payment_started", {
        "amount_usd": amount,
        "network": network,
        "items": items,
    })


def track_payment_completed(user_id: str, amount: float, network: str, subscriptions: int):
    """Track payment confirmed as PAID"""
    get_posthog_service().track(user_id, "payment_completed", {
        "amount_usd": amount,
        "network": network,
        "subscriptions_created": subscriptions,
    })
