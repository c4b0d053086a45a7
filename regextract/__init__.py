"""Regulatory obligation extraction pipeline."""
