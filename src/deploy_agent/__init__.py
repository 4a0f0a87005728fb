"""Deploy Agent - single-host trigger for pull, rebuild and restart of a compose stack."""

__version__ = "0.1.0"

from deploy_agent.core.config import Settings
from deploy_agent.deploy.coordinator import UpdateCoordinator

__all__ = ["Settings", "UpdateCoordinator", "__version__"]
