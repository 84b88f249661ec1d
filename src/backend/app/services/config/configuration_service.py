"""
Configuration Service
Centralized configuration management with caching and validation
"""

import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class ConfigurationService:
    """
    Centralized service for loading and caching application configurations

    Loads configurations from JSON files in the config directory with:
    - LRU caching for performance
    - Typed getters with code defaults for missing keys
    - Hot-reload capability
    """

    def __init__(self, config_dir: Optional[str] = None):
        """
        Initialize ConfigurationService

        Args:
            config_dir: Path to configuration directory. If None, uses default app/config
        """
        if config_dir is None:
            self.config_dir = Path(__file__).parent.parent.parent / "config"
        else:
            self.config_dir = Path(config_dir)

        logger.info(f"ConfigurationService initialized with config_dir: {self.config_dir}")

    @lru_cache(maxsize=32)
    def load_config(self, config_name: str) -> Dict[str, Any]:
        """
        Load configuration from JSON file with caching

        Args:
            config_name: Name of config file (without .json extension)

        Returns:
            Dict containing configuration data

        Raises:
            FileNotFoundError: If config file not found
            json.JSONDecodeError: If config file is invalid JSON
        """
        try:
            config_path = self.config_dir / f"{config_name}.json"

            if not config_path.exists():
                raise FileNotFoundError(f"Config file not found: {config_path}")

            with open(config_path, "r", encoding="utf-8") as f:
                config = json.load(f)

            logger.info(f"Loaded config: {config_name} (version: {config.get('version', 'N/A')})")
            return config

        except FileNotFoundError:
            logger.error(f"Config file not found: {config_name}.json")
            raise
        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON in {config_name}.json: {e}")
            raise

    def reload_config(self, config_name: str) -> Dict[str, Any]:
        """
        Force reload of configuration (clears cache)

        Args:
            config_name: Name of config file to reload

        Returns:
            Freshly loaded configuration
        """
        self.load_config.cache_clear()
        logger.info(f"Cache cleared, reloading config: {config_name}")
        return self.load_config(config_name)

    def get_search_config(self) -> Dict[str, Any]:
        """Get search configuration"""
        return self.load_config("search_config")

    def _section(self, name: str) -> Dict[str, Any]:
        return self.get_search_config().get(name, {}) or {}

    def get_query_config(self) -> Dict[str, Any]:
        """Get query limits (max length, page sizes)"""
        return self._section("query")

    def get_fuzzy_match_config(self) -> Dict[str, Any]:
        """Get fuzzy matching configuration"""
        return self._section("fuzzy_matching")

    def get_ranking_config(self) -> Dict[str, Any]:
        """Get ranking weight configuration"""
        return self._section("ranking")

    def get_cache_config(self) -> Dict[str, Any]:
        """Get search cache configuration"""
        return self._section("cache")

    def get_cache_ttl(self) -> int:
        """Get search cache TTL in seconds"""
        return int(self.get_cache_config().get("ttl_seconds", 300))

    def get_warming_config(self) -> Dict[str, Any]:
        """Get cache warming configuration"""
        return self.get_cache_config().get("warming", {}) or {}

    def get_suggestion_config(self) -> Dict[str, Any]:
        """Get suggestion engine configuration"""
        return self._section("suggestions")

    def get_analytics_config(self) -> Dict[str, Any]:
        """Get analytics recorder configuration"""
        return self._section("analytics")

    def get_search_timeout(self) -> float:
        """Get per-search time budget in seconds"""
        return float(self._section("timeouts").get("search_seconds", 5.0))

    def get_suggestions_timeout(self) -> float:
        """Get autocomplete time budget in seconds"""
        return float(self._section("timeouts").get("suggestions_seconds", 2.0))

    def get_index_refresh_interval(self) -> int:
        """Get index snapshot refresh interval in seconds"""
        return int(self._section("index").get("refresh_interval_seconds", 300))

    def get_price_ranges(self) -> List[Dict[str, Any]]:
        """Get price buckets used for filter options"""
        return self._section("filters").get("price_ranges", [])

    def get_no_results_config(self) -> Dict[str, Any]:
        """Get no-results response limits"""
        return self._section("no_results")


# Global singleton instance
_config_service: Optional[ConfigurationService] = None


def get_config_service() -> ConfigurationService:
    """
    Get global ConfigurationService singleton instance

    Returns:
        ConfigurationService instance
    """
    global _config_service
    if _config_service is None:
        _config_service = ConfigurationService()
    return _config_service


def init_config_service(config_dir: Optional[str] = None) -> ConfigurationService:
    """
    Initialize global ConfigurationService with custom config directory

    Args:
        config_dir: Path to configuration directory

    Returns:
        ConfigurationService instance
    """
    global _config_service
    _config_service = ConfigurationService(config_dir)
    logger.info("Global ConfigurationService initialized")
    return _config_service
