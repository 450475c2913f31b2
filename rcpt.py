#!/usr/bin/env python
"""
rcpt.py
───────
Receipt reconciliation runner.

Usage:
    python rcpt.py [run] [source] [KEY=VALUE ...]     # correct, trigger job, drain
    python rcpt.py split [source] [--groups K] [--out-dir DIR]
    python rcpt.py blocked [--dir DIR] [--out FILE]

Drivers for the target application and the job service are loaded from
`target_app.factory` and `job.factory` in config.yaml.
"""

from __future__ import annotations

import sys

from rcpt_core.config import configure_logging


if __name__ == "__main__":
    configure_logging()
    argv = sys.argv[1:]
    if argv and argv[0] in {"split", "--split"}:
        from rcpt_core.cli import run_split_argv
        sys.exit(run_split_argv(argv[1:]))
    if argv and argv[0] in {"blocked", "--blocked"}:
        from rcpt_core.cli import run_blocked_argv
        sys.exit(run_blocked_argv(argv[1:]))
    if argv and argv[0] == "run":
        argv = argv[1:]
    from rcpt_core.pipeline import run_cli
    sys.exit(run_cli(argv))
