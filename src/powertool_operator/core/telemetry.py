"""OpenTelemetry configuration for the operator."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

if TYPE_CHECKING:
    from fastapi import FastAPI

from powertool_operator import __version__
from powertool_operator.core.config import Settings

logger = logging.getLogger(__name__)

RECONCILE_SPAN = "powertool.reconcile"


def build_resource(settings: Settings) -> Resource:
    """Describe this operator process and the custom resources it manages."""
    return Resource.create(
        {
            "service.name": settings.otel_service_name,
            "service.version": __version__,
            "deployment.environment": settings.environment,
            "powertool.api_group": settings.api_group,
            "powertool.api_version": settings.api_version,
            "powertool.workers": settings.max_concurrent_reconciles,
        }
    )


def setup_telemetry(app: "FastAPI", settings: Settings) -> None:
    """Configure OpenTelemetry tracing for the operator.

    Reconciliation passes are traced through :func:`reconcile_span`; the HTTP
    probes and controller endpoints through the FastAPI instrumentation.

    Args:
        app: FastAPI application instance
        settings: Operator settings
    """
    if not settings.otel_enabled:
        logger.info("OpenTelemetry disabled")
        return

    provider = TracerProvider(resource=build_resource(settings))

    if settings.environment == "development":
        # Console spans only when debugging locally
        if settings.debug:
            provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    else:
        try:
            otlp_exporter = OTLPSpanExporter(endpoint=settings.otel_exporter_endpoint)
            provider.add_span_processor(BatchSpanProcessor(otlp_exporter))
        except Exception as e:
            logger.warning(f"Failed to configure OTLP exporter: {e}")

    trace.set_tracer_provider(provider)

    FastAPIInstrumentor.instrument_app(app, excluded_urls="health,ready,startup")

    logger.info(
        f"OpenTelemetry configured: service={settings.otel_service_name}, "
        f"resources={settings.api_group}/{settings.api_version}"
    )


def get_tracer(name: str) -> trace.Tracer:
    """Get a tracer for the given module name."""
    return trace.get_tracer(name)


@contextmanager
def reconcile_span(tracer: trace.Tracer, namespace: str, name: str) -> Iterator[trace.Span]:
    """Open the span that covers one reconciliation pass of a PowerTool.

    The span carries the job key; callers add ``powertool.phase`` and the
    created/failed pod counts once the pass is done. Exceptions raised inside
    are recorded on the span and mark it as an error.
    """
    with tracer.start_as_current_span(
        RECONCILE_SPAN,
        attributes={"powertool.namespace": namespace, "powertool.name": name},
    ) as span:
        yield span


def record_reconcile_outcome(
    span: trace.Span, phase: str | None, created: int, failed: int
) -> None:
    """Attach the result of a pass to its span."""
    span.set_attribute("powertool.phase", phase or "")
    span.set_attribute("powertool.containers_created", created)
    span.set_attribute("powertool.containers_failed", failed)
    if failed:
        span.add_event("container_creation_failed", {"count": failed})
