"""
Remote service connectors.

This package contains:
- base: Abstract database and key-value store contracts
- cloud_connector: HTTP connector for the public recipe database
- kv_connector: Cloud and in-memory key-value stores
"""
