"""
Lead materialization.
"""
