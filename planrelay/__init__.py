"""planrelay: step-by-step agent plan execution with webhook delivery."""

from .config import PlanRelayConfig, load_config
from .contracts import ContinuationMessage, Plan, PlanStatus, PlanStep, StepResult
from .dispatch import ContinuationQueue
from .orchestrate import PlanOrchestrator
from .persistence import get_repository
from .reporting import PlanReporter
from .service import PlanService, Services, build_services
from .steps import StepRegistry
from .sweeper import PlanSweeper
from .transports import get_transport
from .webhooks import WebhookDispatcher
from .worker import ContinuationWorker

__version__ = "0.1.0"
__all__ = [
    "ContinuationMessage",
    "ContinuationQueue",
    "ContinuationWorker",
    "Plan",
    "PlanOrchestrator",
    "PlanRelayConfig",
    "PlanReporter",
    "PlanService",
    "PlanStatus",
    "PlanStep",
    "PlanSweeper",
    "Services",
    "StepRegistry",
    "StepResult",
    "WebhookDispatcher",
    "build_services",
    "get_repository",
    "get_transport",
    "load_config",
]
