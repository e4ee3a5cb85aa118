from patchpilot.exceptions import InvalidRequestError
from patchpilot.llm.providers.base import ApiHandler, supports_single_completion

DEFAULT_ENHANCE_PROMPT = (
    "Generate an enhanced version of this prompt (reply with only the enhanced prompt - no conversation, "
    + "explanations, lead-in, bullet points, placeholders, or surrounding quotes):"
)


def enhance_prompt(handler: ApiHandler, prompt_text: str, enhance_instructions: str | None = None) -> str:
    """Rewrites a prompt with a single non-streaming completion. No task or history is created."""
    if not prompt_text:
        raise InvalidRequestError("No prompt text provided")
    if not supports_single_completion(handler):
        raise InvalidRequestError("The selected API provider does not support prompt enhancement")

    instructions = enhance_instructions if enhance_instructions is not None else DEFAULT_ENHANCE_PROMPT
    return handler.complete_prompt(f"{instructions}\n\n{prompt_text}")
