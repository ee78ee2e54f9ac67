from typing import Callable, List, Tuple

StackListener = Callable[[bool, bool], None]


class StackObservable:
    """Notifies subscribers with (can_undo, can_redo) after every stack transition."""

    def __init__(self):
        self._listeners: List[StackListener] = []
        self.last: Tuple[bool, bool] = (False, False)

    def subscribe(self, listener: StackListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def notify(self, can_undo: bool, can_redo: bool) -> None:
        self.last = (can_undo, can_redo)
        # Copy so a listener may unsubscribe itself while being notified.
        for listener in list(self._listeners):
            listener(can_undo, can_redo)

    def __len__(self) -> int:
        return len(self._listeners)
