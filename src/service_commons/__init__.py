"""Shared infrastructure for marketplace services: config, errors, logging."""
