"""
Appointment store.
"""
