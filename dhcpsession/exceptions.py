"""
dhcpsession/exceptions.py - Exceptions for DHCP client sessions
"""


class DHCPSessionException(Exception):
    pass


class ExecutableNotFound(DHCPSessionException):
    pass


class SpawnFailed(DHCPSessionException):
    pass


class ProcessGone(DHCPSessionException):
    pass


class MalformedCallback(DHCPSessionException):
    pass


class SubscriberDeliveryFailed(DHCPSessionException):
    def __init__(self, subscriber, event, error):
        super().__init__(f"Delivery of {event} to {subscriber} failed: {error!r}")
        self.subscriber = subscriber
        self.event = event
        self.error = error


class QueueFull(DHCPSessionException):
    pass
