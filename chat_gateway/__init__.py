"""
Chat-completion gateway package.

This package contains:
- settings: provider/model/timeout configuration
- logging_config: shared logging setup
- request_logger: correlation-id keyed lifecycle events
- normalizer / model_selector / personas: inbound request shaping
- upstream: one bounded HTTP call to the provider
- errors: upstream failure classification
- fallback: single-hop fallback model retry
- stream_relay: SSE passthrough to the client
- responder: client-facing error envelopes
- handler: per-request orchestration
- routes: FastAPI app factory and HTTP endpoints
"""
