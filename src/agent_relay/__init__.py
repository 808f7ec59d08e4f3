"""File-coordinated multi-agent cycle orchestration."""

__version__ = "0.1.0"
