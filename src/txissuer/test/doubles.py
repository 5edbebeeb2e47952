"""
Test doubles.
"""
from twisted.internet.interfaces import IReactorFromThreads
from twisted.internet.task import Clock
from zope.interface import implementer


@implementer(IReactorFromThreads)
class SynchronousReactorThreads(Clock):
    """
    A ``Clock`` that also implements ``IReactorFromThreads`` by calling
    things synchronously in the same thread.
    """
    def callFromThread(self, f, *args, **kwargs):  # noqa
        f(*args, **kwargs)
