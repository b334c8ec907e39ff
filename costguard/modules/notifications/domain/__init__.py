from .slack import SlackService, get_slack_service

__all__ = ["SlackService", "get_slack_service"]
