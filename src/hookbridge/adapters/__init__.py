"""Adapters that bind the core ports to Telethon, httpx and the datastores."""
