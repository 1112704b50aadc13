"""Interchangeable round-trip strategies."""

from rtprobe.application.strategies.base import RoundTripStrategy
from rtprobe.application.strategies.change_notification import ChangeNotificationStrategy
from rtprobe.application.strategies.self_echo import SelfEchoStrategy

__all__ = ["RoundTripStrategy", "SelfEchoStrategy", "ChangeNotificationStrategy"]
