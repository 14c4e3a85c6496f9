from kitty.observability.logger import bind_turn, clear_turn, get_logger, setup_logging

__all__ = ["setup_logging", "get_logger", "bind_turn", "clear_turn"]
