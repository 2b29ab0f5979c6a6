"""Affiliate Hub: onboarding, referral commissions and payouts."""

__version__ = "1.0.0"
