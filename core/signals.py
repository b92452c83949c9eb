class Signal:
    """
    Ordered observer list.

    Callbacks run synchronously, in connection order, on the emitter's task.
    A callback that raises stops the emission and the error reaches the emitter.
    """

    def __init__(self, name: str = ""):
        self.name = name
        self.callbacks = []

    def connect(self, callback):
        if callback is not None and callback not in self.callbacks:
            self.callbacks.append(callback)

    def disconnect(self, callback):
        """Remove a callback from the signal."""
        if callback in self.callbacks:
            self.callbacks.remove(callback)

    def disconnect_all(self):
        """Remove all callbacks."""
        self.callbacks.clear()

    def __bool__(self):
        return bool(self.callbacks)

    def emit(self, *args, **kwargs):
        for cb in self.callbacks[:]:
            cb(*args, **kwargs)
