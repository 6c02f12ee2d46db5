"""
Scenario factory with entry point discovery.

This module discovers scenario plugins via the "load_chaos.scenarios"
entry point group, enabling third-party scenario packages.
"""

from importlib.metadata import entry_points
from typing import Dict, List, Optional, Type

from load_chaos_sdk.common.logger import get_logger
from load_chaos_sdk.scenarios.base import Scenario

logger = get_logger(__name__)

ENTRY_POINT_GROUP = "load_chaos.scenarios"


class ScenarioFactory:
    """
    Factory for creating scenario instances from configuration.

    Uses entry points (group: "load_chaos.scenarios") to discover
    available scenarios at runtime.
    """

    _scenario_classes: Dict[str, Type[Scenario]] = {}
    _loaded: bool = False

    @classmethod
    def _load_entry_points(cls) -> None:
        if cls._loaded:
            return

        try:
            scenario_eps = entry_points(group=ENTRY_POINT_GROUP)
            for ep in scenario_eps:
                try:
                    scenario_class = ep.load()
                    if not isinstance(scenario_class, type) or not issubclass(scenario_class, Scenario):
                        logger.warning(
                            f"Scenario entry point '{ep.name}' ignored: not a Scenario subclass"
                        )
                        continue
                    cls._scenario_classes[ep.name] = scenario_class
                    logger.debug(f"Loaded scenario entry point: {ep.name} -> {scenario_class.__name__}")
                except Exception as e:
                    logger.warning(f"Failed to load scenario entry point '{ep.name}': {e}")
        except Exception as e:
            logger.error(f"Failed to load scenario entry points: {e}", exc_info=True)
        # Built-ins are always available, also when running from source
        cls._register_builtin_scenarios()
        cls._loaded = True

    @classmethod
    def _register_builtin_scenarios(cls) -> None:
        from load_chaos_sdk.scenarios.http import (
            CreateMessageScenario,
            CreatePostScenario,
            GetPostsScenario,
            GetPostWithMessagesScenario,
            HealthCheckScenario,
            InteractiveScenario,
            MessageFloodScenario,
            MixedOperationsScenario,
            RapidReadsScenario,
            ReadOperationsScenario,
            SystemHealthScenario,
        )
        from load_chaos_sdk.scenarios.stream import StreamSessionScenario

        defaults = {
            "get_posts": GetPostsScenario,
            "get_post_with_messages": GetPostWithMessagesScenario,
            "create_post": CreatePostScenario,
            "create_message": CreateMessageScenario,
            "health_check": HealthCheckScenario,
            "rapid_reads": RapidReadsScenario,
            "message_flood": MessageFloodScenario,
            "mixed_operations": MixedOperationsScenario,
            "read_operations": ReadOperationsScenario,
            "interactive": InteractiveScenario,
            "system_health": SystemHealthScenario,
            "stream_session": StreamSessionScenario,
        }

        for key, value in defaults.items():
            cls._scenario_classes.setdefault(key, value)

    @classmethod
    def register(cls, scenario_type: str, scenario_class: Type[Scenario]) -> None:
        """
        Register a new scenario type.

        Args:
            scenario_type: Type identifier string.
            scenario_class: Scenario class to register.
        """
        cls._scenario_classes[scenario_type] = scenario_class
        logger.debug(f"Registered scenario type: {scenario_type} -> {scenario_class.__name__}")

    @classmethod
    def create(cls, config) -> Optional[Scenario]:
        """
        Create a scenario instance from configuration.

        Args:
            config: ScenarioConfig instance.

        Returns:
            Scenario instance, or None if the type is unknown or invalid.
        """
        cls._load_entry_points()
        scenario_class = cls._scenario_classes.get(config.type)
        if scenario_class is None:
            logger.error(f"Unknown scenario type: {config.type}")
            return None

        try:
            scenario = scenario_class(
                name=config.name,
                weight=config.weight,
                enabled=config.enabled,
                expect=config.expect or None,
                budgets_ms=config.budgets_ms,
                **config.params,
            )
            logger.debug(f"Created scenario: {scenario}")
            return scenario
        except Exception as e:
            logger.error(f"Failed to create scenario {config.name} ({config.type}): {e}", exc_info=True)
            return None

    @classmethod
    def get_available_types(cls) -> List[str]:
        """
        Get list of available scenario types.

        Returns:
            List of registered scenario type identifiers.
        """
        cls._load_entry_points()
        return list(cls._scenario_classes.keys())
