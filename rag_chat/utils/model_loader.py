from langchain_google_genai import ChatGoogleGenerativeAI, GoogleGenerativeAIEmbeddings
from langchain_groq import ChatGroq
from langchain_openai import ChatOpenAI, OpenAIEmbeddings

from rag_chat.exception.custom_exception import ERROR_CODES, RagChatException
from rag_chat.logger import GLOBAL_LOGGER as log
from rag_chat.utils.config_loader import get_config, get_env


class ApiKeyManager:
    # provider name -> env variable holding its key
    PROVIDER_KEYS = {
        "openai": "OPENAI_API_KEY",
        "google": "GOOGLE_API_KEY",
        "groq": "GROQ_API_KEY",
    }

    def __init__(self):
        env = get_env()
        self.keys = {}

        for provider, k in self.PROVIDER_KEYS.items():
            if val := getattr(env, k):
                self.keys[provider] = val
                log.info("Loaded %s from env", k)

    def get(self, provider: str, error_code: str) -> str:
        """Return the key for a provider or fail with the given error code."""
        key_name = self.PROVIDER_KEYS.get(provider)
        if key_name is None:
            raise RagChatException(
                f"Unsupported provider {provider}", 500, error_code
            )
        if provider not in self.keys:
            log.error("Missing required API key: %s", key_name)
            raise RagChatException(
                f"{key_name} is not configured", 500, error_code
            )
        return self.keys[provider]


class ModelLoader:
    """
    Responsible for:
    - Loading the embedding model used for chunks and queries
    - Loading the chat LLM used for completions
    """

    def __init__(self):
        self.api_key_mgr = ApiKeyManager()
        self.config = get_config()
        log.info("YAML config loaded | keys=%s", list(self.config.keys()))

    def load_embeddings(self):
        """
        Load and return the configured embedding model.
        """
        emb_config = self.config["embedding_model"]
        provider = emb_config.get("provider", "openai")
        model_name = emb_config["model_name"]
        code = ERROR_CODES["EMBEDDING_ERROR"]

        log.info("Loading embedding model | provider=%s | model=%s", provider, model_name)

        if provider == "openai":
            return OpenAIEmbeddings(
                model=model_name,
                api_key=self.api_key_mgr.get(provider, code),
                dimensions=emb_config.get("dimension"),
            )

        if provider == "google":
            return GoogleGenerativeAIEmbeddings(
                model=model_name,
                google_api_key=self.api_key_mgr.get(provider, code),
            )

        raise RagChatException(f"Unsupported embedding provider {provider}", 500, code)

    def load_llm(self, role: str = "chat"):
        """
        Load and return the configured LLM model.
        Args:
            role: key under `llm` in config.yaml

        Returns:
            Configured chat model instance
        """
        if role not in self.config["llm"]:
            log.error("LLM role not found in config | role=%s", role)
            raise ValueError(f"LLM role '{role}' not found in config")

        llm_config = self.config["llm"][role]

        provider = llm_config["provider"]
        model = llm_config["model_name"]
        temp = llm_config.get("temperature")
        max_t = llm_config.get("max_tokens")
        code = ERROR_CODES["OPENAI_ERROR"]

        log.info("Loading LLM | role=%s | provider=%s | model=%s", role, provider, model)

        if provider == "openai":
            return ChatOpenAI(
                model=model,
                api_key=self.api_key_mgr.get(provider, code),
                temperature=temp,
                max_tokens=max_t,
                stream_usage=True,
            )

        if provider == "google":
            return ChatGoogleGenerativeAI(
                model=model,
                google_api_key=self.api_key_mgr.get(provider, code),
                temperature=temp,
                max_output_tokens=max_t,
            )

        if provider == "groq":
            return ChatGroq(
                model=model,
                api_key=self.api_key_mgr.get(provider, code),
                temperature=temp,
                max_tokens=max_t,
            )

        raise ValueError(f"Unsupported provider {provider}")
