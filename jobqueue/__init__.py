"""
Tenant-Scoped Background Job Queue

Deferred work with safe retries on an exponential backoff ladder, dead-letter
quarantine for work that cannot succeed, and at-most-one active job per
(organization, idempotency key).
"""

__version__ = "1.0.0"
