"""
Centralized prompt loading with caching.
Loads prompts once from YAML and caches for performance.
"""

import yaml
from pathlib import Path
from functools import lru_cache


@lru_cache(maxsize=1)
def load_prompts() -> dict:
    """
    Loads prompts and canned replies from the YAML configuration file.
    Only loads once and reuses the result.

    Returns:
        Dictionary containing all prompt configurations

    Raises:
        FileNotFoundError: If prompts.yaml is not found
    """
    config_path = Path(__file__).parent.parent.parent / "config" / "prompts.yaml"
    with open(config_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f)


def render_prompt(section: str, **values) -> str:
    """
    Fills the ``template`` of a prompt section with keyword values.

    Args:
        section: Top-level key in prompts.yaml
        **values: Placeholders referenced by the template

    Returns:
        Prompt text ready to send to the LLM
    """
    prompts = load_prompts()
    values.setdefault("persona", prompts.get("base_persona", ""))
    return prompts[section]["template"].format(**values)


def response_text(key: str) -> str:
    """Returns a canned reply from the ``responses`` section."""
    return load_prompts()["responses"][key]
