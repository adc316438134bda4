"""Shared framework, storage and utility code for distribution modeling services."""
