"""Subscription, billing and notification services"""
from .subscription_service import SubscriptionService
from .billing_service import BillingService
from .email_service import EmailService

__all__ = ['SubscriptionService', 'BillingService', 'EmailService']
