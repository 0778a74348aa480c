"""Tiered model access: tier comparison, premium daily quota, selector listing."""
