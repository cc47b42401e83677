"""Ansible inventory location for a cluster."""

from dataclasses import dataclass
from pathlib import Path

from config import ProfileConfig


@dataclass
class Inventory:
    """Inventory file handed to deployment jobs as INVFILE."""
    cluster_name: str
    filepath: Path

    @classmethod
    def load(cls, cluster_name: str, config: ProfileConfig) -> 'Inventory':
        """Return the cluster's inventory, creating an empty file if needed."""
        name = cluster_name or 'default'
        config.inventory_dir.mkdir(parents=True, exist_ok=True)
        filepath = config.inventory_dir / f'{name}.ini'
        filepath.touch(exist_ok=True)
        return cls(cluster_name=name, filepath=filepath)
