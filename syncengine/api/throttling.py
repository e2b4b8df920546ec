"""
API throttling classes.
"""

from rest_framework.throttling import UserRateThrottle


class RunTriggerThrottle(UserRateThrottle):
    """
    Throttle for job-creating endpoints.

    Rate: 30 requests per hour per user.
    Applied to: /api/v1/assignments/<id>/run/
    """

    rate = '30/hour'
    scope = 'run_trigger'


class SampleThrottle(UserRateThrottle):
    """
    Throttle for sample and analysis endpoints, which fetch live pages.

    Rate: 60 requests per hour per user.
    Applied to: /api/v1/assignments/<id>/sample/, /api/v1/web-sources/<id>/analyze/
    """

    rate = '60/hour'
    scope = 'sample'
