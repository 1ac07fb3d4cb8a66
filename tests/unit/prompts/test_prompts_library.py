# tests/unit/prompts/test_prompts_library.py

from pathlib import Path

import pytest

from outline_kit.prompts import DEFAULT_TEMPLATES_DIR, Prompt, PromptsLibrary


@pytest.fixture
def prompts_dir(tmp_path: Path) -> Path:
    """Create a temp directory with sample YAML prompt files."""
    (tmp_path / "outline.yaml").write_text(
        """name: outline
version: "1"
description: Outline a chunk
inputs:
  text: The chunk text
template: "Outline this: {{ text }}"
"""
    )

    # Same name, newer version with a system prompt
    (tmp_path / "outline_v2.yaml").write_text(
        """name: outline
version: "2"
description: Outline a chunk with context
inputs:
  text: The chunk text
  context: Previously found nodes
system: You return JSON only.
template: |
  Context: {{context}}
  Text: {{ text }}
"""
    )

    (tmp_path / "notes.txt").write_text("not a prompt")
    return tmp_path


class TestPromptsLibrary:
    def test_loads_yaml_files_only(self, prompts_dir: Path) -> None:
        library = PromptsLibrary(prompts_dir)

        assert library.list() == [("outline", "1"), ("outline", "2")]

    def test_get_prompt_by_name_and_version(self, prompts_dir: Path) -> None:
        library = PromptsLibrary(str(prompts_dir))

        prompt = library.get("outline", "2")

        assert isinstance(prompt, Prompt)
        assert prompt.description == "Outline a chunk with context"
        assert prompt.system == "You return JSON only."
        assert set(prompt.inputs) == {"text", "context"}

    def test_get_raises_keyerror_for_unknown_version(self, prompts_dir: Path) -> None:
        library = PromptsLibrary(prompts_dir)

        with pytest.raises(KeyError, match="Prompt 'outline' version '9' not found"):
            library.get("outline", "9")

    def test_duplicate_name_and_version_rejected(self, prompts_dir: Path) -> None:
        (prompts_dir / "zz_copy.yaml").write_text(
            (prompts_dir / "outline.yaml").read_text()
        )

        with pytest.raises(ValueError, match="Duplicate prompt 'outline' version '1'"):
            PromptsLibrary(prompts_dir)

    def test_empty_directory_loads_no_prompts(self, tmp_path: Path) -> None:
        assert PromptsLibrary(tmp_path).list() == []

    def test_default_library_has_structure_prompt(self) -> None:
        library = PromptsLibrary()

        prompt = library.get("document_structure", "1")

        assert DEFAULT_TEMPLATES_DIR.is_dir()
        assert prompt.system
        assert set(prompt.inputs) == {
            "profile",
            "granularity",
            "chunk_position",
            "chunk_length",
            "context",
            "text",
        }


class TestPromptRender:
    def test_render_fills_placeholders(self, prompts_dir: Path) -> None:
        prompt = PromptsLibrary(prompts_dir).get("outline", "2")

        rendered = prompt.render(text="Body", context="None")

        assert rendered == "Context: None\nText: Body\n"

    def test_render_does_not_expand_values(self, prompts_dir: Path) -> None:
        prompt = PromptsLibrary(prompts_dir).get("outline", "1")

        assert prompt.render(text="{{ text }}") == "Outline this: {{ text }}"

    def test_render_missing_input(self, prompts_dir: Path) -> None:
        prompt = PromptsLibrary(prompts_dir).get("outline", "2")

        with pytest.raises(ValueError, match="missing inputs: context"):
            prompt.render(text="Body")

    def test_render_unknown_input(self, prompts_dir: Path) -> None:
        prompt = PromptsLibrary(prompts_dir).get("outline", "1")

        with pytest.raises(ValueError, match="unknown inputs: extra"):
            prompt.render(text="Body", extra="x")

    def test_extra_fields_rejected(self) -> None:
        with pytest.raises(ValueError):
            Prompt(
                name="p",
                version="1",
                description="d",
                inputs={},
                template="t",
                unexpected="x",
            )
