from .manager import ConversationManager, ConversationState, state_key, working_memory_key

__all__ = ["ConversationManager", "ConversationState", "state_key", "working_memory_key"]
