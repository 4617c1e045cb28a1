"""
Transcript completion polling.
"""
