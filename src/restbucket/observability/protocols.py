# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Interface the dispatcher reports metrics through.

Pass any object with these four methods as ``metrics_collector`` to route
dispatcher metrics into StatsD, OpenTelemetry or a test double instead of
the bundled MetricsCollector.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class MetricsCollectorProtocol(Protocol):
    """
    What the dispatcher needs from a metrics backend.

    Example:
        >>> class PrintingCollector:
        ...     def inc_counter(self, name, value=1, labels=None): print(name, value)
        ...     def set_gauge(self, name, value, labels=None): print(name, value)
        ...     def observe_histogram(self, name, value, labels=None): pass
        ...     def get_metrics(self): return {}
        >>>
        >>> isinstance(PrintingCollector(), MetricsCollectorProtocol)
        True
    """

    def inc_counter(
        self,
        name: str,
        value: int = 1,
        labels: dict[str, str] | None = None,
    ) -> None: ...

    def set_gauge(
        self,
        name: str,
        value: float,
        labels: dict[str, str] | None = None,
    ) -> None: ...

    def observe_histogram(
        self,
        name: str,
        value: float,
        labels: dict[str, str] | None = None,
    ) -> None: ...

    def get_metrics(self) -> dict[str, Any]:
        """Snapshot included under ``"collector"`` in ``Dispatcher.get_metrics()``."""
        ...


__all__ = ["MetricsCollectorProtocol"]
