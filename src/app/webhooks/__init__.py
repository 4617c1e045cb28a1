"""
Inbound voice-provider webhook intake and processing.
"""
