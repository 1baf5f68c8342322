"""Map project folders to ``*.test`` domains served through a local reverse proxy.

The public surface is the command line (``darp`` / ``python -m darp``). The
store model and the deploy pass are importable for tooling that wants to read
or prepare a configuration without shelling out.
"""

from __future__ import annotations

from .application.deploy import BASE_PORT, DeployPlan, plan_ports
from .domain.errors import DarpError
from .domain.model import ConfigurationStore, slugify_name

__all__ = ["BASE_PORT", "ConfigurationStore", "DarpError", "DeployPlan", "plan_ports", "slugify_name"]
