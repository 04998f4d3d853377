from __future__ import annotations

from snatprobe.target.server import TargetServer, run_server

__all__ = ["TargetServer", "run_server"]
