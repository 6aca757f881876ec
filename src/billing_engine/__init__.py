"""
Billing Engine Package

Markup resolution and pricing for third-party-logistics fulfillment billing.
Resolves each cost transaction to a single markup rule and computes the
billed amounts that are written back as preview or final pricing.
"""

__version__ = "1.0.0"
