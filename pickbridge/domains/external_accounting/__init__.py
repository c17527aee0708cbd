"""Accounting provider integrations: tokens, catalogue sync and estimate finalization."""
