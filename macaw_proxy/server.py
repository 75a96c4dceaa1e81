from typing import Sequence

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    SpanExporter,
    SpanExportResult,
)
from prometheus_client import Info
from prometheus_fastapi_instrumentator import Instrumentator

from macaw_proxy.exceptions import ProxyError, proxy_exception_handler
from macaw_proxy.lifecycle import manage_lifespan
from macaw_proxy.routes import router
from macaw_proxy.vars import (
    ASSET_DIR,
    METRICS_PATH,
    OTLP_ENDPOINT,
    OTLP_HEADERS,
    SERVICE_NAME,
    STATIC_MOUNT_PATH,
    UPSTREAM_ORIGIN,
)

app = FastAPI(
    lifespan=manage_lifespan, docs_url=None, redoc_url=None, openapi_url=None
)
instrumentator = Instrumentator()

instrumentator.instrument(app).expose(app, endpoint=METRICS_PATH, include_in_schema=False)


class FilteringSpanExporter(SpanExporter):
    """
    Wrapper exporter that filters out noisy ASGI body spans from streaming responses.
    Every relayed chunk would otherwise produce its own span.
    """

    def __init__(self, exporter: SpanExporter):
        self.exporter = exporter

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        filtered_spans = [
            span
            for span in spans
            if not (
                span.attributes
                and span.attributes.get("asgi.event.type") == "http.response.body"
            )
        ]
        if filtered_spans:
            return self.exporter.export(filtered_spans)
        return SpanExportResult.SUCCESS

    def shutdown(self):
        return self.exporter.shutdown()

    def force_flush(self, timeout_millis: int = 30000):
        return self.exporter.force_flush(timeout_millis)


trace.set_tracer_provider(
    TracerProvider(resource=Resource.create({"service.name": SERVICE_NAME}))
)
tracer_provider = trace.get_tracer_provider()
if OTLP_ENDPOINT:
    otlp_exporter = OTLPSpanExporter(
        endpoint=OTLP_ENDPOINT,
        headers=OTLP_HEADERS or None,
    )
    tracer_provider.add_span_processor(
        BatchSpanProcessor(FilteringSpanExporter(otlp_exporter))
    )

FastAPIInstrumentor.instrument_app(app, excluded_urls=METRICS_PATH)

app_info = Info("fastapi_app_info", "Application Info")
app_info.info({"app_name": SERVICE_NAME, "upstream": UPSTREAM_ORIGIN})

app.add_exception_handler(ProxyError, proxy_exception_handler)

# Served locally, ahead of the catch-all proxy route
app.mount(STATIC_MOUNT_PATH, StaticFiles(directory=ASSET_DIR, check_dir=False), name="public")
app.include_router(router)
