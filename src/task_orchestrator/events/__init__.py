"""Typed engine events and the in-process bus that delivers them."""
