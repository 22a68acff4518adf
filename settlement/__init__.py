"""Marketplace settlement engine: commission accrual, payout batching and payout execution."""
