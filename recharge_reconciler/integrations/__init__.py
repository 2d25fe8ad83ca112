"""Integrations with the payment gateway and user feedback channels."""
