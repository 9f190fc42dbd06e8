"""
prbatch — batch pre-merge verification.

Purpose
- Verify, before merging, that an ordered batch of proposed changes integrates
  cleanly and passes the build/test pipeline, all together or change by change.

Import boundary rules
- No side effects at import time (no config loading, no logging init).
- Heavy submodules are imported by the CLI, not here.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
