"""
Domain Errors
Every failure raised by the engine derives from DeviceWatchError.
"""


class DeviceWatchError(Exception):
    """Base class for engine errors"""


class ChannelNotFoundError(DeviceWatchError):
    def __init__(self, channel_id: str):
        super().__init__(f"Channel {channel_id} not found")
        self.channel_id = channel_id


class NotificationError(DeviceWatchError):
    """A channel adapter could not deliver an alert"""


class InvalidTransitionError(DeviceWatchError):
    def __init__(self, execution_id: str, current: str, target: str):
        super().__init__(f"Execution {execution_id}: illegal transition {current} -> {target}")
        self.execution_id = execution_id
        self.current = current
        self.target = target
