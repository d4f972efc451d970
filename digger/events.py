import logging

_WARNING_SUFFIXES = (":error", ":failed", ":rate-limited", ":timeout")


class EventSink:
    """
    Structured event sink handed to the orchestrator and each probe.

    One sink is created per inspection; `child(scope)` gives a probe its own
    scope while sharing the destination. The default destination is the
    `digger.events` logger.
    """

    def __init__(self, scope: str = "digger", logger: logging.Logger | None = None):
        self.scope = scope
        self._logger = logger or logging.getLogger("digger.events")

    def child(self, scope: str) -> "EventSink":
        return type(self)(f"{self.scope}.{scope}", self._logger)

    def emit(self, event: str, **fields) -> None:
        level = logging.WARNING if event.endswith(_WARNING_SUFFIXES) else logging.DEBUG
        self._logger.log(level, "[%s] %s %s", self.scope, event, fields)


class RecordingSink(EventSink):
    """EventSink that also keeps (scope, event, fields) tuples in memory."""

    def __init__(self, scope: str = "digger", logger: logging.Logger | None = None, records: list | None = None):
        super().__init__(scope, logger)
        self.records = records if records is not None else []

    def child(self, scope: str) -> "RecordingSink":
        return RecordingSink(f"{self.scope}.{scope}", self._logger, self.records)

    def emit(self, event: str, **fields) -> None:
        self.records.append((self.scope, event, fields))
        super().emit(event, **fields)

    def names(self) -> list[str]:
        return [event for _, event, _ in self.records]
