"""
Text generation -- a primary/secondary backend facade with health tracking.

Usage:
    from .llm import create_generator

    generator = create_generator()          # local CLI primary, provider SDK secondary
    text = await generator.complete("Summarize...", system_prompt="You are...", timeout=10)
"""

from .client import CacheablePrompt, ProviderBackend
from .cli_backend import CliBackend
from .generator import (
    BackendHealth,
    HealthStatus,
    TextBackend,
    TextGenerator,
    create_generator,
)
from .prompts import DefaultPromptBuilder, PromptBuilder
