# coding: utf-8
"""
Sentry configuration for error monitoring and tracking
"""
import sentry_sdk
from sentry_sdk.integrations.asyncio import AsyncioIntegration
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from loguru import logger

from config.config import SENTRY_DSN, SENTRY_TRACES_SAMPLE_RATE, ENVIRONMENT


def init_sentry() -> bool:
    """
    Initialize Sentry SDK for error monitoring

    Returns:
        True if Sentry was enabled
    """
    if not SENTRY_DSN:
        logger.warning("SENTRY_DSN not configured - error monitoring disabled")
        return False

    try:
        sentry_sdk.init(
            dsn=SENTRY_DSN,
            environment=ENVIRONMENT,
            integrations=[
                AsyncioIntegration(),
                FastApiIntegration(),
                SqlalchemyIntegration(),
            ],
            traces_sample_rate=SENTRY_TRACES_SAMPLE_RATE if ENVIRONMENT == "production" else 1.0,
            sample_rate=1.0,
            attach_stacktrace=True,
            send_default_pii=False,
            max_breadcrumbs=50,
            before_send=before_send_hook,
        )
        logger.info(f"Sentry initialized successfully (Environment: {ENVIRONMENT})")
        return True

    except Exception as e:
        logger.error(f"Failed to initialize Sentry: {e}")
        return False


def before_send_hook(event, hint):
    """
    Drop expected client errors and strip credentials before sending
    """
    # Imported here: config/ must not depend on src/ at import time
    from src.core.exceptions import AppError

    if 'exc_info' in hint:
        exc_type, exc_value, tb = hint['exc_info']

        # 4xx errors are part of normal API traffic
        if isinstance(exc_value, AppError) and exc_value.status_code < 500:
            return None

    if event.get('request'):
        headers = event['request'].get('headers', {})
        for header in ('Authorization', 'authorization', 'Cookie', 'cookie'):
            if header in headers:
                headers[header] = '[Filtered]'

    return event


def set_user_context(user_id: str, email: str = None, role: str = None):
    """
    Attach the dashboard user to subsequent Sentry events

    Args:
        user_id: User ID
        email: User email (optional)
        role: User role (optional)
    """
    sentry_sdk.set_user({
        "id": str(user_id),
        "email": email,
        "role": role,
    })
