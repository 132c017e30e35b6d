"""PTB environment bootstrap.

Sets environment flags that python-telegram-bot reads at import time.
``__main__`` imports this module before anything that pulls in ``telegram``.
"""

from __future__ import annotations

import os

# RetryAfter.retry_after is a timedelta under this flag; utils handles both forms
os.environ.setdefault("PTB_TIMEDELTA", "1")
