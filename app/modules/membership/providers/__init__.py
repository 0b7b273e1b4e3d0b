"""Remote directory providers for the membership module."""

from modules.membership.providers.base import DirectoryProvider, directory_operation
from modules.membership.providers.gitlab import GitLabDirectory

__all__ = ["DirectoryProvider", "GitLabDirectory", "directory_operation"]
