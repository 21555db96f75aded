"""
Reaper module.
Contains the reaper killing dead jobs and cleaning up old job records.
"""

from jobengine.reaper.main import Reaper, run

__all__ = ["Reaper", "run"]
