"""Plugin discovery - scans directories to find plugin packages."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from plugin_runtime.constants import MANIFEST_FILE
from plugin_runtime.errors import ManifestError
from plugin_runtime.plugins.manifest import PluginManifest, load_manifest

logger = logging.getLogger(__name__)


@dataclass
class PluginPackage:
    """A plugin package found on disk with its validated manifest."""

    manifest: PluginManifest
    source: str  # "bundled" | "installed" | "external"

    @property
    def id(self) -> str:
        return self.manifest.package_id

    @property
    def path(self) -> Path:
        return self.manifest.root


class PluginDiscovery:
    """Discovers plugins by scanning directories for package descriptors."""

    def __init__(self, search_paths: List[Tuple[Path, str]]):
        """Initialize discovery with search paths.

        Args:
            search_paths: List of (path, source_label) tuples, searched in order.
        """
        self.search_paths = search_paths
        self.errors: Dict[str, str] = {}

    def discover_all(self) -> List[PluginPackage]:
        """Discover all plugins from configured search paths.

        Invalid packages are skipped and recorded in ``self.errors``.

        Returns:
            List of discovered packages, first-found wins on duplicate ids
        """
        discovered = []
        seen_ids = set()
        self.errors = {}

        for search_path, source in self.search_paths:
            if not search_path.exists():
                logger.debug(f"Plugin search path does not exist: {search_path}")
                continue

            for package in self._scan_directory(search_path, source):
                if package.id in seen_ids:
                    logger.warning(
                        f"Duplicate plugin ID '{package.id}' found at {package.path}, "
                        f"skipping (first-found wins)"
                    )
                    continue
                seen_ids.add(package.id)
                discovered.append(package)

        logger.info(f"Discovered {len(discovered)} plugin(s)")
        return discovered

    def discover_single(self, plugin_path: Path, source: str = "external") -> PluginPackage:
        """Discover a single plugin from a specific path.

        Raises:
            ManifestError: If the package descriptor is missing or invalid
        """
        return PluginPackage(manifest=load_manifest(plugin_path), source=source)

    def _scan_directory(self, search_path: Path, source: str) -> List[PluginPackage]:
        packages = []

        for item in sorted(search_path.iterdir()):
            if not item.is_dir() or not (item / MANIFEST_FILE).exists():
                continue

            package = self._try_load(item, source)
            if package:
                packages.append(package)

        return packages

    def _try_load(self, plugin_dir: Path, source: str) -> Optional[PluginPackage]:
        try:
            package = self.discover_single(plugin_dir, source)
            logger.debug(f"Discovered plugin: {package.id} at {plugin_dir}")
            return package
        except ManifestError as e:
            self.errors[str(plugin_dir)] = str(e)
            logger.error(f"Invalid plugin at {plugin_dir}: {e}")
            return None
