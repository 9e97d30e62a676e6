import os
from typing import Dict

PROMPTS_DIR = os.path.realpath(os.path.join(os.path.dirname(__file__), '..', 'prompts'))


def create_prompt_from_template(template_name: str, variables: Dict[str, str]) -> str:
    """
    Loads a prompt template from the package's 'prompts' directory, formats it
    with the provided variables, and returns the final prompt string.
    """
    template_path = os.path.join(PROMPTS_DIR, template_name)

    try:
        with open(template_path, 'r', encoding='utf-8') as f:
            template_str = f.read()
        return template_str.format(**variables)
    except FileNotFoundError:
        raise FileNotFoundError(f"Prompt template not found at: {template_path}")
    except KeyError as e:
        raise KeyError(f"Missing variable {e} in the provided dictionary for template {template_name}")
