"""Agent contracts, the in-memory agent registry and the HTTP agent client."""
