"""Freelance marketplace service: task lifecycle, escrow ledger and dispute arbitration."""
