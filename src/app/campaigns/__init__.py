"""
Campaign aggregate metrics.
"""
