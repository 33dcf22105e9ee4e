"""Service wiring and retry policy.

The service context lives in ``savegame.system.context``; it is not
re-exported here because the managers import the retry policy from this
package.
"""

from .recovery import RetryAttempt, RetryPolicy, retry_async

__all__ = ["RetryAttempt", "RetryPolicy", "retry_async"]
