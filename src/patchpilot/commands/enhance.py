from patchpilot.config import get_model_name
from patchpilot.console import configure_logging
from patchpilot.llm.enhance import enhance_prompt
from patchpilot.llm.router import build_api_handler


def enhance_text(text: str, model: str | None, instructions: str | None, verbose: bool) -> None:
    configure_logging(verbose)
    handler = build_api_handler(get_model_name(model))
    print(enhance_prompt(handler, text, instructions))
