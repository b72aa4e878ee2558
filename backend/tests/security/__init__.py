"""Security tests for OrderPulse

This module contains security-focused tests including:
- Tenant escape/isolation through scoped sessions
- Tenant header handling on the review API
"""
