"""
SyncEngine Django application.

Extracts structured rows from websites into relational database tables:
rule evaluation, page fetching, pagination, staged jobs and scheduling.
"""
