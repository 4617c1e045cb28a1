"""
Durable delayed-job queue and worker pools.
"""
