"""
Call records and lifecycle reconciliation.

Keep this package __init__ lightweight: importing ORM models here would
trigger mapper configuration on any submodule import.
"""

__all__: list[str] = []
