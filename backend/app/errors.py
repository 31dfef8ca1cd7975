"""Relay error types.

Every failure the relay surfaces to a session maps onto one of these codes.
"""
from typing import Any, Dict, Optional


class RelayError(Exception):
    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details


class SenderBannedError(RelayError):
    def __init__(self, user_id: str):
        super().__init__(
            "sender_banned",
            "You are banned from sending messages.",
            {"userId": user_id},
        )
        self.user_id = user_id


class PersistenceError(RelayError):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("persistence_error", message, details)


class InvalidRequestError(RelayError):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("invalid_request", message, details)
