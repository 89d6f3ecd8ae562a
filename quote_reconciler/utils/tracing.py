"""OpenTelemetry tracing setup with Phoenix and OpenInference Pydantic AI."""

import logging

from quote_reconciler.config import (
    DEPLOYMENT_ENVIRONMENT,
    PHOENIX_API_KEY,
    PHOENIX_COLLECTOR_ENDPOINT,
    PHOENIX_ENABLED,
    PHOENIX_PROJECT_NAME,
)

logger = logging.getLogger(__name__)
_initialized = False
_tracer_provider = None


def _resolve_endpoint() -> str:
    """Ensure the HTTP endpoint ends with the OTLP /v1/traces path."""
    endpoint = PHOENIX_COLLECTOR_ENDPOINT.rstrip("/")
    if not endpoint.endswith("/v1/traces"):
        endpoint = f"{endpoint}/v1/traces"
    return endpoint


def _build_resource():
    """Build Resource with service identity and Phoenix project name."""
    from opentelemetry.sdk.resources import Resource
    from openinference.semconv.resource import ResourceAttributes as OIResourceAttributes

    return Resource.create(
        {
            "service.name": PHOENIX_PROJECT_NAME,
            "service.version": "0.1.0",
            "deployment.environment": DEPLOYMENT_ENVIRONMENT,
            OIResourceAttributes.PROJECT_NAME: PHOENIX_PROJECT_NAME,
        }
    )


def _build_pipeline():
    """
    Build TracerProvider with OpenInferenceSpanProcessor first, then export to Phoenix.
    Order ensures Pydantic AI spans are enriched with OpenInference attributes before export.
    """
    from opentelemetry import trace
    from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor
    from openinference.instrumentation.pydantic_ai import (
        OpenInferenceSpanProcessor,
        is_openinference_span,
    )

    headers = None
    if PHOENIX_API_KEY:
        headers = {"authorization": f"Bearer {PHOENIX_API_KEY}"}

    provider = TracerProvider(resource=_build_resource())
    provider.add_span_processor(OpenInferenceSpanProcessor(span_filter=is_openinference_span))
    exporter = OTLPSpanExporter(endpoint=_resolve_endpoint(), headers=headers)
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    logger.info("Tracing enabled, exporting to %s", _resolve_endpoint())
    return provider


def init_tracing() -> None:
    """Initialize Phoenix OTEL tracing (call once at startup). No-op unless PHOENIX_ENABLED."""
    global _initialized, _tracer_provider
    if _initialized or not PHOENIX_ENABLED:
        return

    _tracer_provider = _build_pipeline()
    _initialized = True


def get_tracer():
    """Return the OpenTelemetry tracer. Spans are no-ops until init_tracing has run."""
    from opentelemetry import trace

    return trace.get_tracer("quote-reconciler", "0.1.0")


def shutdown_tracing() -> None:
    """Flush and shutdown the tracer provider so spans are exported before process exit."""
    from opentelemetry.sdk.trace import TracerProvider

    global _tracer_provider, _initialized
    provider = _tracer_provider
    if isinstance(provider, TracerProvider):
        provider.force_flush(timeout_millis=5000)
        provider.shutdown()
    _tracer_provider = None
    _initialized = False
