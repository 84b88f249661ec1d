"""
LangSmith Observability Service.

Search entry points are decorated with ``@traceable``; this service owns the
client and the environment switches that make those traces flow.
"""

import logging
import os
from typing import Optional

from langsmith import Client

logger = logging.getLogger(__name__)


class LangSmithService:
    """LangSmith client holder for search tracing."""

    def __init__(self):
        """Initialize LangSmith client with .env configuration."""
        self.api_key = os.getenv("LANGSMITH_API_KEY")
        self.project = os.getenv("LANGSMITH_PROJECT", "product-search")
        self.enable_tracing = os.getenv("LANGSMITH_TRACING", "true").lower() == "true"
        self.client: Optional[Client] = None

        if self.api_key and self.enable_tracing:
            try:
                self.client = Client(api_key=self.api_key)

                # @traceable reads these at call time
                os.environ["LANGSMITH_TRACING"] = "true"
                os.environ["LANGSMITH_PROJECT"] = self.project

                logger.info(f"LangSmith tracing enabled for project: {self.project}")
            except Exception as e:
                logger.warning(f"LangSmith client initialization failed: {e}")
                self.client = None
        else:
            # Without a key, keep @traceable a no-op
            os.environ.setdefault("LANGSMITH_TRACING", "false")
            logger.info("LangSmith tracing disabled")

    def is_enabled(self) -> bool:
        """Check if LangSmith tracing is enabled."""
        return self.client is not None


# Global LangSmith service instance
_langsmith_service: Optional[LangSmithService] = None


def get_langsmith_service() -> LangSmithService:
    global _langsmith_service
    if _langsmith_service is None:
        _langsmith_service = LangSmithService()
    return _langsmith_service
