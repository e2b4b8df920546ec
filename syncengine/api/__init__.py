"""
REST API for triggering, observing and committing extraction jobs.
"""
