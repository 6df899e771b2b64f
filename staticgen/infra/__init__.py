"""
Infrastructure: HTTP client, state store and job scheduler.
"""
