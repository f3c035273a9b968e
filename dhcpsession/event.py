class Event:
    """
    Base class for events published on an event bus.
    """
    pass
