"""
Chat-completion client used by the clinical pipelines.

Wraps a LangChain chat model (DeepSeek through its OpenAI-compatible API by
default) behind three calls: plain text, token streaming and JSON.
"""

from functools import lru_cache
from typing import Any, Dict, Iterator, Optional

from langchain_core.messages import HumanMessage, SystemMessage

from hopeai.config import DEFAULT_TEMPERATURE, STRUCTURED_TEMPERATURE, get_chat_model, logger
from hopeai.prompts import CLINICAL_SYSTEM_PROMPT, STRUCTURED_SYSTEM_PROMPT
from hopeai.utils import message_text, parse_json_response


class LLMServiceError(RuntimeError):
    """The AI service could not produce an answer."""


class ClinicalLLM:
    def __init__(self, model=None, system_prompt: SystemMessage = CLINICAL_SYSTEM_PROMPT,
                 temperature: float = DEFAULT_TEMPERATURE, structured_model=None):
        self._model = model
        # Fall back to the main model for JSON calls when one was injected
        self._structured_model = structured_model if structured_model is not None else model
        self.system_prompt = system_prompt
        self.temperature = temperature

    @property
    def model(self):
        if self._model is None:
            try:
                self._model = get_chat_model(temperature=self.temperature)
            except Exception as e:
                raise LLMServiceError(f"Could not create the chat model: {e}") from e
        return self._model

    @property
    def structured_model(self):
        if self._structured_model is None:
            try:
                self._structured_model = get_chat_model(temperature=STRUCTURED_TEMPERATURE, json_mode=True)
            except Exception as e:
                raise LLMServiceError(f"Could not create the chat model: {e}") from e
        return self._structured_model

    def _messages(self, prompt: str, system_prompt: Optional[SystemMessage] = None):
        return [system_prompt or self.system_prompt, HumanMessage(content=prompt)]

    def generate(self, prompt: str, system_prompt: Optional[SystemMessage] = None) -> str:
        """Send one prompt and return the full answer text."""
        try:
            result = self.model.invoke(self._messages(prompt, system_prompt))
        except LLMServiceError:
            raise
        except Exception as e:
            logger.error(f"Error generating response: {e}")
            raise LLMServiceError(f"Error generating response: {e}") from e
        return message_text(result)

    def stream(self, prompt: str, system_prompt: Optional[SystemMessage] = None) -> Iterator[str]:
        """Yield the answer as it is produced, skipping empty chunks."""
        try:
            for chunk in self.model.stream(self._messages(prompt, system_prompt)):
                text = message_text(chunk)
                if text:
                    yield text
        except LLMServiceError:
            raise
        except Exception as e:
            logger.error(f"Error streaming response: {e}")
            raise LLMServiceError(f"Error streaming response: {e}") from e

    def generate_structured(self, prompt: str) -> Dict[str, Any]:
        """Ask for a JSON object and return it parsed."""
        try:
            result = self.structured_model.invoke(self._messages(prompt, STRUCTURED_SYSTEM_PROMPT))
        except LLMServiceError:
            raise
        except Exception as e:
            logger.error(f"Error generating structured response: {e}")
            raise LLMServiceError(f"Error generating structured response: {e}") from e
        return parse_json_response(message_text(result))


@lru_cache(maxsize=1)
def get_clinical_llm() -> ClinicalLLM:
    """Process-wide client for the configured provider."""
    return ClinicalLLM()
