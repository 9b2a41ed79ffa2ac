"""Core domain package for hookbridge.

Core contains rule resolution, config caching, credential storage and the
message pipeline without any Telegram, HTTP or database-specific code,
keeping the business logic portable and testable.
"""
