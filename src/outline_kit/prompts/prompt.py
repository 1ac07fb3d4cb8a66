# src/outline_kit/prompts/prompt.py

import re

from pydantic import BaseModel

_PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")


class Prompt(BaseModel):
    name: str
    version: str
    description: str
    inputs: dict[str, str]
    template: str
    system: str | None = None

    class Config:
        extra = "forbid"

    def render(self, **values: object) -> str:
        """Fill ``{{ name }}`` placeholders declared in ``inputs``.

        Raises:
            ValueError: If a declared input is missing or an unknown one is given.
        """
        missing = sorted(set(self.inputs) - set(values))
        if missing:
            raise ValueError(f"Prompt '{self.name}' missing inputs: {', '.join(missing)}")
        unknown = sorted(set(values) - set(self.inputs))
        if unknown:
            raise ValueError(f"Prompt '{self.name}' got unknown inputs: {', '.join(unknown)}")

        return _PLACEHOLDER.sub(
            lambda m: str(values[m.group(1)]) if m.group(1) in values else m.group(0),
            self.template,
        )
