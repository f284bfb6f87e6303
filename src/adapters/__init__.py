"""Adapters that connect the core ports to IMAP, MQTT, HTTP and the filesystem."""
