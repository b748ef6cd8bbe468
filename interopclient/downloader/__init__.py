"""Downloader module with the test case strategies."""

from .fetch import Downloader, DownloadResult, DownloadTarget, fetch_all
from .manager import TestCaseRunner, run_testcase
from .strategies import (
    StrategyBase, PlainTransferStrategy, MultiConnectStrategy,
    VersionNegotiationStrategy, ResumptionStrategy
)

__all__ = [
    'Downloader',
    'DownloadResult',
    'DownloadTarget',
    'fetch_all',
    'TestCaseRunner',
    'run_testcase',
    'StrategyBase',
    'PlainTransferStrategy',
    'MultiConnectStrategy',
    'VersionNegotiationStrategy',
    'ResumptionStrategy'
]
