from .custom_logger import CustomLogger

# every module logs through the "rag_chat" logger with %-style arguments
GLOBAL_LOGGER = CustomLogger().get_logger("rag_chat")

__all__ = ["CustomLogger", "GLOBAL_LOGGER"]
