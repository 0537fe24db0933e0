from daybook.infra.llm.base import LLMAPIError, LLMClient
from daybook.infra.llm.classifier import (
    Classification,
    IntentClassifier,
    RescheduleDetails,
    ScheduleDetails,
    parse_classification,
    strip_code_fences,
)
from daybook.infra.llm.openai_client import OpenAIAPIError, OpenAIClient

__all__ = [
    "Classification",
    "IntentClassifier",
    "LLMAPIError",
    "LLMClient",
    "OpenAIAPIError",
    "OpenAIClient",
    "RescheduleDetails",
    "ScheduleDetails",
    "parse_classification",
    "strip_code_fences",
]
