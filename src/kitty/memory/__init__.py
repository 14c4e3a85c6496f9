from kitty.memory.history import ConversationHistory
from kitty.memory.token_budget import TokenBudgetManager, TokenUsage, load_encoding

__all__ = ["ConversationHistory", "TokenBudgetManager", "TokenUsage", "load_encoding"]
