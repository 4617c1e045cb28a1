"""
Structured information extraction from call transcripts.
"""
