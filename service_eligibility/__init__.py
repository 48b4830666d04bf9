"""Delay Repay eligibility engine service."""
