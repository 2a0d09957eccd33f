"""Billing: invoices derived from project billing fields."""
