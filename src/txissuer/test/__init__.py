from os import getenv

import eliot.twisted
from hypothesis import HealthCheck, settings

eliot.twisted.redirectLogsForTrial()
del eliot

# Store tests share one @given test across per-store TestCase subclasses.
_suppressed = [HealthCheck.differing_executors]

settings.register_profile(
    "default", settings(suppress_health_check=_suppressed))
settings.register_profile(
    "coverage",
    settings(
        max_examples=20,
        suppress_health_check=_suppressed + [HealthCheck.too_slow]))
settings.load_profile(getenv(u'HYPOTHESIS_PROFILE', 'default'))

del HealthCheck, getenv, settings
