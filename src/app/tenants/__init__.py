"""
Tenants, phone-number ownership and per-tenant credentials.
"""
