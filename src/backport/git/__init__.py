"""Git operations on the local clone."""

from backport.git.gateway import GitGateway
from backport.git.naming import backport_branch_name

__all__ = ["GitGateway", "backport_branch_name"]
