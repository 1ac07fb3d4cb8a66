# src/outline_kit/prompts/__init__.py

from .prompt import Prompt
from .prompts_library import DEFAULT_TEMPLATES_DIR, PromptsLibrary

__all__ = ["DEFAULT_TEMPLATES_DIR", "Prompt", "PromptsLibrary"]
