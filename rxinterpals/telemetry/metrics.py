"""OTel metrics helper.

Provides :class:`MetricsHelper`, a convenience wrapper around an OTel
``Meter`` for creating counters.
"""

from opentelemetry.metrics import Counter, Meter, MeterProvider


class MetricsHelper:
    """Convenience wrapper around an OTel ``Meter``.

    Args:
        meter_provider: The :class:`MeterProvider` to obtain a meter from.
        instrumentation_name: Identifies the instrumentation library, e.g.
            ``"rxinterpals.gateway"``.

    Example::

        helper = MetricsHelper(meter_provider, "rxinterpals.gateway")
        frames = helper.counter("interpals.gateway.frames")
        frames.add(1, {"op": "DISPATCH"})
    """

    def __init__(self, meter_provider: MeterProvider, instrumentation_name: str):
        self._meter: Meter = meter_provider.get_meter(instrumentation_name)

    def counter(
        self,
        name: str,
        description: str = "",
        unit: str = "1",
    ) -> Counter:
        """Create (or retrieve) a monotonic counter instrument."""
        return self._meter.create_counter(name, description=description, unit=unit)
