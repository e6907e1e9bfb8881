"""Recipe domain: step configuration, variable preparation and the service."""

from .service import RecommendationService, StepRun, get_recommendation_service, init_service
from .steps import STEP_CONFIGURATIONS, StepConfig, get_step_config

__all__ = [
    "STEP_CONFIGURATIONS",
    "RecommendationService",
    "StepConfig",
    "StepRun",
    "get_recommendation_service",
    "get_step_config",
    "init_service",
]
