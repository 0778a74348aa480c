"""
Core application modules.
Contains logging, tracing, metrics, cache and database plumbing.
"""
