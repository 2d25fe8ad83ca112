"""Core reconciliation logic: sessions, verification, polling and orchestration."""
