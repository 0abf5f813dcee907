# coding: utf-8
"""
Billing & Subscription Configuration

Period table, role groups and billing filters shared by the API and services.
Adjustable without database migrations.
"""

# =======================
# SUBSCRIPTION PERIODS
# =======================

# Calendar months granted by each billing period
PERIOD_MONTHS = {
    "ONE_MONTH": 1,
    "THREE_MONTHS": 3,
    "SIX_MONTHS": 6,
    "TWELVE_MONTHS": 12,
}

PERIOD_LABELS = {
    "ONE_MONTH": "1 Month",
    "THREE_MONTHS": "3 Months",
    "SIX_MONTHS": "6 Months",
    "TWELVE_MONTHS": "12 Months",
}


# =======================
# ROLES
# =======================

# Roles whose actions go to the audit log (everyone else -> event log)
STAFF_ROLES = ("ADMIN", "SUPPORT", "MANAGER")

# Roles allowed to create payments for other users and confirm them
PAYMENT_MANAGER_ROLES = ("ADMIN", "MANAGER")

# Roles allowed to pay out affiliate commissions
PAYOUT_ROLES = ("ADMIN",)


# =======================
# BILLING FILTERS
# =======================

# GET /api/billing?dateRange=...
BILLING_DATE_RANGES = {
    "7d": 7,
    "30d": 30,
    "90d": 90,
}

# Default affiliate commission (percent of the item final price)
DEFAULT_COMMISSION_RATE = 10.0


def get_period_label(period: str) -> str:
    """Human readable period name (falls back to the raw value)"""
    return PERIOD_LABELS.get((period or "").upper(), period or "")
