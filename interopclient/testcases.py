"""Test case identifiers understood by the client."""

from enum import Enum
from typing import List


class TestCase(str, Enum):
    """Interop test case names, as passed in the TESTCASE variable."""

    HTTP3 = "http3"
    HANDSHAKE = "handshake"
    TRANSFER = "transfer"
    RETRY = "retry"
    MULTICONNECT = "multiconnect"
    VERSIONNEGOTIATION = "versionnegotiation"
    RESUMPTION = "resumption"
    ZERORTT = "zerortt"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, name: str) -> "TestCase":
        """Map an exact test case name to its enum member, UNKNOWN otherwise."""
        try:
            return cls(name)
        except ValueError:
            return cls.UNKNOWN


def supported_testcases() -> List[TestCase]:
    """All test cases the dispatcher can run."""
    return [case for case in TestCase if case is not TestCase.UNKNOWN]
