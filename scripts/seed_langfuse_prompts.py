"""One-time script to create the assistant prompt in Langfuse.

Run from project root:
    python scripts/seed_langfuse_prompts.py

This creates prompts with the 'production' label.
If prompts already exist, Langfuse will create a new version.
"""

from langfuse import Langfuse
from ordering_assistant.config import get_settings
from ordering_assistant.prompts import FALLBACK_SYSTEM_PROMPT, PROMPT_NAME

ASSISTANT_PROMPT_CONFIG = {"model": "mistral-small-latest", "temperature": 0.0}

PROMPTS = [
    {
        "name": PROMPT_NAME,
        "type": "chat",
        "prompt": [{"role": "system", "content": FALLBACK_SYSTEM_PROMPT}],
        "config": ASSISTANT_PROMPT_CONFIG,
    },
]


def main() -> None:
    settings = get_settings()
    langfuse = Langfuse(
        public_key=settings.langfuse_public_key,
        secret_key=settings.langfuse_secret_key,
        host=settings.langfuse_base_url,
    )

    for prompt_def in PROMPTS:
        langfuse.create_prompt(
            name=prompt_def["name"],
            type=prompt_def["type"],
            prompt=prompt_def["prompt"],
            config=prompt_def["config"],
            labels=["production"],
        )
        print(f"Created prompt: {prompt_def['name']}")

    langfuse.flush()
    print(f"\nDone. {len(PROMPTS)} prompts created with 'production' label.")


if __name__ == "__main__":
    main()
