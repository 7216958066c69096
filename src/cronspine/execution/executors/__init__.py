"""Job executors.

- :class:`BasicJobExecutor` runs jobs in-process, second by second.
- :class:`ProcessJobExecutor` runs every job in its own subprocess.
"""

from .basic import BasicJobExecutor
from .process import ProcessJobExecutor
from .protocol import JobExecutor, JobsBySecond

__all__ = ["BasicJobExecutor", "JobExecutor", "JobsBySecond", "ProcessJobExecutor"]
