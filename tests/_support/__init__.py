"""
Test support constants shared by fixtures and test modules.

Usage::

    from tests._support import LINUX_AMI, PREFIX
"""

PREFIX = "es-test-"
LINUX_AMI = "ami-linux0001"
WINDOWS_AMI = "ami-windows01"
AGENT_GROUP = "sg-agent0001"
