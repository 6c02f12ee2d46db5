"""
Disruption factory with entry point discovery.

This module discovers disruption plugins via the "load_chaos.disruptions"
entry point group, enabling third-party disruption packages.
"""

from importlib.metadata import entry_points
from typing import Dict, List, Optional, Type

from load_chaos_sdk.chaos.strategies.base import BaseDisruption
from load_chaos_sdk.common.logger import get_logger

logger = get_logger(__name__)

ENTRY_POINT_GROUP = "load_chaos.disruptions"


class DisruptionFactory:
    """
    Factory for creating disruption instances from configuration.

    Uses entry points (group: "load_chaos.disruptions") to discover
    available disruptions at runtime.
    """

    _disruption_classes: Dict[str, Type[BaseDisruption]] = {}
    _loaded: bool = False

    @classmethod
    def _load_entry_points(cls) -> None:
        if cls._loaded:
            return

        try:
            for ep in entry_points(group=ENTRY_POINT_GROUP):
                try:
                    disruption_class = ep.load()
                    if not isinstance(disruption_class, type) or not issubclass(disruption_class, BaseDisruption):
                        logger.warning(
                            f"Disruption entry point '{ep.name}' ignored: not a BaseDisruption subclass"
                        )
                        continue
                    cls._disruption_classes[ep.name] = disruption_class
                    logger.debug(f"Loaded disruption entry point: {ep.name} -> {disruption_class.__name__}")
                except Exception as e:
                    logger.warning(f"Failed to load disruption entry point '{ep.name}': {e}")
        except Exception as e:
            logger.error(f"Failed to load disruption entry points: {e}", exc_info=True)
        cls._register_builtin_disruptions()
        cls._loaded = True

    @classmethod
    def _register_builtin_disruptions(cls) -> None:
        from load_chaos_sdk.chaos.strategies.amplification import (
            BatchLatencyStrategy,
            PayloadAmplificationStrategy,
            ReadAmplificationStrategy,
        )

        defaults = {
            "read_amplification": ReadAmplificationStrategy,
            "payload_amplification": PayloadAmplificationStrategy,
            "batch_latency": BatchLatencyStrategy,
        }
        for key, value in defaults.items():
            cls._disruption_classes.setdefault(key, value)

    @classmethod
    def register(cls, disruption_type: str, disruption_class: Type[BaseDisruption]) -> None:
        """Register a new disruption type."""
        cls._disruption_classes[disruption_type] = disruption_class
        logger.debug(f"Registered disruption type: {disruption_type} -> {disruption_class.__name__}")

    @classmethod
    def create(cls, config) -> Optional[BaseDisruption]:
        """
        Create a disruption instance from configuration.

        Args:
            config: ChaosStrategyConfig instance.

        Returns:
            BaseDisruption instance, or None if type is unknown.
        """
        cls._load_entry_points()
        disruption_class = cls._disruption_classes.get(config.type)
        if disruption_class is None:
            logger.error(f"Unknown disruption type: {config.type}")
            return None

        try:
            disruption = disruption_class(name=config.name, enabled=config.enabled, **config.params)
            logger.debug(f"Created disruption: {disruption}")
            return disruption
        except Exception as e:
            logger.error(f"Failed to create disruption {config.name} ({config.type}): {e}", exc_info=True)
            return None

    @classmethod
    def get_available_types(cls) -> List[str]:
        cls._load_entry_points()
        return list(cls._disruption_classes.keys())
