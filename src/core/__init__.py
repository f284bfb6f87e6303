"""Core domain package for mailpulse.

Core contains filtering, observation, reconciliation and rating logic without
any IMAP, MQTT or file-specific code, keeping the business logic portable.
"""
