"""
Opguard - composable operation wrappers.

Caching, retry, timeout, circuit breaking, fallback, rate limiting,
debounce/throttle and lifecycle hooks as decorators for plain functions
and coroutine functions alike.

- opguard.core: errors, settings, structured logging
- opguard.execution: the wrappers
"""

__version__ = "0.1.0"

from opguard.core import *  # noqa
from opguard.execution import *  # noqa
