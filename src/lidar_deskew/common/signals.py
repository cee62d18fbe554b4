"""
Extremely simple signals/slots implementation for sharing results between threads
"""

import logging
import queue

_logger = logging.getLogger(__name__)


class StopSignal:
    """ Dummy class used to signal listeners to stop by inserting this into their queues.
    """
    pass


class SimpleQueue:
    """
    A very simple queue to mimic the interface of a thread-safe queue for single-threaded operation.
    Values are stored by reference: whoever gets a value owns it.
    """
    def __init__(self):
        self._data = []

    def put(self, value):
        self._data.append(value)

    def get(self):
        return self._data.pop(0)

    def empty(self):
        return len(self._data) == 0

    def full(self):
        return False


class Slot:
    """ A Slot is a listener which listens to data on a particular signal.

    This is analogous to a subscriber in ROS
    """

    # This should not be called directly. Instead, call Signal.register
    def __init__(self, single_threaded: bool):

        if single_threaded:
            self._queue = SimpleQueue()
        else:
            self._queue = queue.Queue()

    # Checks whether a value is available
    def has_value(self) -> bool:
        return not self._queue.empty()

    # Returns a value if available, and otherwise None
    def get_value(self):
        if not self.has_value():
            return None
        return self._queue.get()

    # Used by Signal to send data. Don't call directly.
    def _insert(self, value):
        self._queue.put(value)


class Signal:
    """ A Signal defines a channel for communication.

    A Signal object is analogous to a topic and publisher in ROS, all in one.

    Calling @m register returns a slot, which functions as a subscriber.
    """

    # Constructor: An empty signal is just an empty list of slots
    # If @p single_threaded is true, this will use a plain list instead of a thread-safe queue
    def __init__(self, single_threaded: bool = False):

        # Stores Slot objects to write to when data is emitted
        self._slots = []

        self._single_threaded = single_threaded

    # Removes all leftover items from the queue.
    def flush(self):
        warned = False
        for s in self._slots:
            while not s._queue.empty():
                if not warned:
                    _logger.warning("Leftover items in queue. This may or may not be an issue.")
                    warned = True
                s._queue.get()

    # Creates and returns a Slot which listens on the Signal
    def register(self) -> Slot:
        self._slots.append(Slot(self._single_threaded))
        return self._slots[-1]

    # Sends the given value to all the registered Slots
    def emit(self, value) -> None:
        for s in self._slots:
            s._insert(value)
