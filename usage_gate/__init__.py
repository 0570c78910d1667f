"""
Usage gate for expensive-model sub-agent dispatches.

Caches rolling quota utilization and downgrades or blocks privileged
task dispatches when a window crosses its configured limit.
"""

import logging

__version__ = "0.1.0"

logging.getLogger("usage_gate").addHandler(logging.NullHandler())
