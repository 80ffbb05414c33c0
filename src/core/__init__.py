"""Core domain package for seekwatch.

Core contains feed parsing, subscription matching, and the push state machine
without any Telegram or storage-specific code, keeping the business logic
portable.
"""
