import os
import logging

from dotenv import load_dotenv
from langchain_ollama import ChatOllama
from langchain_openai import ChatOpenAI
from langchain_google_genai import ChatGoogleGenerativeAI

load_dotenv()

############### CONFIG FLAGS ############
LLM_PROVIDER = os.getenv("LLM_PROVIDER", "deepseek").lower()  # deepseek | gemini | ollama
DEEPSEEK_API_BASE = os.getenv("DEEPSEEK_API_BASE", "https://api.deepseek.com/v1")
DEEPSEEK_API_KEY = os.getenv("DEEPSEEK_API_KEY") or os.getenv("OPENAI_API_KEY")
AI_MODEL = os.getenv("AI_MODEL", "deepseek-chat")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "qwen3:4b")
DB_PATH = os.getenv("DB_PATH", "data/hopeai.db")  # Path to the sqlite database
QUERY_MODE = os.getenv("QUERY_MODE", "flow").lower()  # flow | direct
SEED_DEMO_DATA = os.getenv("SEED_DEMO_DATA", "true").lower() in ("1", "true", "yes")
DEFAULT_TEMPERATURE = 0.3
STRUCTURED_TEMPERATURE = 0.2
MAX_TOKENS = 2048
PREVIOUS_QUERIES_LIMIT = 5  # Previous answered queries included in the patient context
ANSWER_PREVIEW_CHARS = 200
#########################################

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper(),
                    format='%(asctime)s - %(levelname)s - %(name)s - %(message)s',
                    filename=os.getenv("LOG_FILE"),
                    filemode='a')
logger = logging.getLogger("hopeai")

if LLM_PROVIDER == "deepseek" and not DEEPSEEK_API_KEY:
    logger.warning("DEEPSEEK_API_KEY is not set; AI responses will fall back to error answers.")


def get_chat_model(temperature: float = DEFAULT_TEMPERATURE, json_mode: bool = False):
    """
    Build the chat model for the configured provider.

    Args:
        temperature: Sampling temperature for the completion
        json_mode: Ask the provider to return a JSON object only

    Returns:
        A LangChain chat model supporting invoke() and stream()
    """
    if LLM_PROVIDER == "ollama":
        # Local LLM
        return ChatOllama(
            model=OLLAMA_MODEL,
            temperature=temperature,
            num_predict=MAX_TOKENS,
            format="json" if json_mode else None,
        )

    if LLM_PROVIDER == "gemini":
        return ChatGoogleGenerativeAI(
            model=GEMINI_MODEL,
            temperature=temperature,
            max_tokens=MAX_TOKENS,
            timeout=None,
            max_retries=1,
            response_mime_type="application/json" if json_mode else None,
        )

    # DeepSeek speaks the OpenAI chat-completions protocol
    return ChatOpenAI(
        model=AI_MODEL,
        temperature=temperature,
        max_tokens=MAX_TOKENS,
        api_key=DEEPSEEK_API_KEY,
        base_url=DEEPSEEK_API_BASE,
        max_retries=1,
        model_kwargs={"response_format": {"type": "json_object"}} if json_mode else {},
    )
