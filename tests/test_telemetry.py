from fastapi import FastAPI
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from surveydesk import telemetry


def _stub_otel(monkeypatch):
    calls = []
    installed = []
    endpoints = []

    def _instrumentor(name):
        class _Instrumentor:
            def instrument(self, **kwargs):
                calls.append((name, kwargs))

            @staticmethod
            def instrument_app(app):
                calls.append((name, app))

        return _Instrumentor

    def _exporter(endpoint=None):
        endpoints.append(endpoint)
        return InMemorySpanExporter()

    monkeypatch.setattr(telemetry, "_provider", None)
    monkeypatch.setattr(telemetry, "get_engine", lambda: "engine")
    monkeypatch.setattr(telemetry, "OTLPSpanExporter", _exporter)
    monkeypatch.setattr(telemetry, "BatchSpanProcessor", SimpleSpanProcessor)
    monkeypatch.setattr(telemetry.trace, "set_tracer_provider", installed.append)
    monkeypatch.setattr(telemetry, "SQLAlchemyInstrumentor", _instrumentor("sqlalchemy"))
    monkeypatch.setattr(telemetry, "HTTPXClientInstrumentor", _instrumentor("httpx"))
    monkeypatch.setattr(telemetry, "LoggingInstrumentor", _instrumentor("logging"))
    monkeypatch.setattr(telemetry, "FastAPIInstrumentor", _instrumentor("fastapi"))
    monkeypatch.setattr(telemetry, "CeleryInstrumentor", _instrumentor("celery"))
    return calls, installed, endpoints


def test_tracing_disabled_by_default(monkeypatch, override_settings):
    override_settings(otel_enabled=False)
    calls, installed, _ = _stub_otel(monkeypatch)

    telemetry.setup_otel(FastAPI())
    telemetry.setup_worker_otel()

    assert calls == []
    assert installed == []
    with telemetry.get_tracer(__name__).start_as_current_span("analytics.rebuild_day") as span:
        span.set_attribute("survey_id", "abc")


def test_api_and_worker_share_one_provider(monkeypatch, override_settings):
    override_settings(otel_enabled=True, otel_exporter_endpoint="http://collector:4318/")
    calls, installed, endpoints = _stub_otel(monkeypatch)
    app = FastAPI()

    telemetry.setup_otel(app)
    telemetry.setup_worker_otel()

    assert len(installed) == 1
    assert installed[0].resource.attributes["surveydesk.process"] == "api"
    assert endpoints == ["http://collector:4318/v1/traces"]
    assert [name for name, _ in calls] == ["sqlalchemy", "httpx", "logging", "fastapi", "celery"]
    assert ("sqlalchemy", {"engine": "engine"}) in calls
    assert ("fastapi", app) in calls


def test_exporter_defaults_without_endpoint(monkeypatch, override_settings):
    override_settings(otel_enabled=True, otel_exporter_endpoint=None, otel_service_name="surveydesk")
    _, installed, endpoints = _stub_otel(monkeypatch)

    telemetry.setup_worker_otel()

    assert endpoints == [None]
    assert installed[0].resource.attributes["service.name"] == "surveydesk"
