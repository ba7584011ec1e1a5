"""Model tools — 3 tools on a FastMCP sub-server."""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastmcp import FastMCP
from mcp.types import ToolAnnotations
from pydantic import Field, ValidationError

from ..context import get_context
from ..errors import ValidationFailed, make_tool_error, redact
from ..models.invocation import GoogleConfig, InvocationRequest, OpenAIConfig, PromptPair
from ..registry import ModelRegistry
from ..tracing import trace
from ..types import ModelId, coerce_json_param

logger = logging.getLogger(__name__)
models_server = FastMCP("models")


def build_request(
    registry: ModelRegistry,
    model: str,
    *,
    prompt: str | None = None,
    system_instruction: str | None = None,
    user_input: str | None = None,
    parameters: dict[str, Any] | None = None,
    job_id: str | None = None,
) -> InvocationRequest:
    """Turn loose tool arguments into a validated InvocationRequest.

    The parameter bag is validated against the config type of the model's
    provider, so keys the provider family does not know are rejected here.
    """
    spec = registry.lookup(model)
    if prompt is None and user_input is None:
        raise ValidationFailed("Provide either prompt or user_input", model=model)
    if prompt is not None and user_input is not None:
        raise ValidationFailed("Provide prompt or user_input, not both", model=model)
    if prompt is not None and system_instruction:
        raise ValidationFailed("system_instruction pairs with user_input, not prompt", model=model)

    config_cls = GoogleConfig if spec.provider == "google" else OpenAIConfig
    params = {k: v for k, v in (parameters or {}).items() if k not in ("model", "provider")}
    try:
        config = config_cls.model_validate({**params, "model": model})
        body: str | PromptPair = (
            PromptPair(system_instruction=system_instruction or "", user_input=user_input)
            if user_input is not None and system_instruction
            else (prompt if prompt is not None else user_input)
        )
        return InvocationRequest(prompt=body, config=config, job_id=job_id)
    except ValidationError as exc:
        raise ValidationFailed(redact(str(exc)), model=model) from None


@models_server.tool(annotations=ToolAnnotations(readOnlyHint=True, openWorldHint=True))
@trace(name="model_call", span_type="TOOL")
async def model_call(
    model: ModelId,
    prompt: Annotated[str | None, Field(description="Single combined prompt")] = None,
    system_instruction: Annotated[str | None, Field(description="System instruction (with user_input)")] = None,
    user_input: Annotated[str | None, Field(description="User input (with system_instruction)")] = None,
    parameters: Annotated[dict | str | None, Field(
        description="Provider parameters, e.g. {\"temperature\": 0.2, \"max_output_tokens\": 2048}",
    )] = None,
) -> dict:
    """Call one registered model through the resilient invocation layer.

    Unsupported parameters are neutralized rather than rejected; transient
    failures are retried with backoff behind a per-model circuit breaker.

    Args:
        model: Registered model id (see ``model_list``).
        prompt: Single prompt string. Mutually exclusive with ``user_input``.
        system_instruction: Optional system instruction paired with ``user_input``.
        user_input: User input paired with ``system_instruction``.
        parameters: Parameter bag for the model's provider family.

    Returns:
        Dict with content, usage, duration and metadata, or a tool error.
    """
    parameters = coerce_json_param(parameters, dict)
    try:
        if parameters is not None and not isinstance(parameters, dict):
            raise ValidationFailed("parameters must be a JSON object", model=model)
        ctx = get_context()
        request = build_request(
            ctx.registry, model,
            prompt=prompt,
            system_instruction=system_instruction,
            user_input=user_input,
            parameters=parameters,
        )
        response = await ctx.factory.call(request)
        return response.model_dump(mode="json")
    except Exception as exc:
        return make_tool_error(exc)


@models_server.tool(annotations=ToolAnnotations(readOnlyHint=True, idempotentHint=True, openWorldHint=False))
@trace(name="model_list", span_type="TOOL")
async def model_list() -> dict:
    """List registered models with their provider, handler family and supported parameters.

    Returns:
        Dict with ``models`` (list) and ``available_handlers`` (families with credentials).
    """
    ctx = get_context()
    models = [
        {
            "model_id": spec.model_id,
            "provider": spec.provider,
            "handler_family": spec.handler_family,
            "supported_parameters": sorted(spec.supported_parameters),
            "max_output_tokens": spec.max_output_tokens,
            "max_input_tokens": spec.max_input_tokens,
            "timeout_seconds": spec.timeout_seconds,
            "requires_responses_api": spec.requires_responses_api,
        }
        for spec in ctx.registry.list_available_models()
    ]
    return {"models": models, "available_handlers": sorted(ctx.handlers)}


@models_server.tool(annotations=ToolAnnotations(readOnlyHint=True, idempotentHint=True, openWorldHint=False))
@trace(name="model_health", span_type="TOOL")
async def model_health() -> dict:
    """Report recent call health and circuit-breaker states.

    Returns:
        Dict with ``health`` (healthy/degraded/unhealthy plus details),
        ``breakers`` (per-model state) and ``metrics`` (per-model counters).
    """
    ctx = get_context()
    return {
        "health": ctx.monitor.health_status().model_dump(mode="json"),
        "breakers": {m: s.model_dump(mode="json") for m, s in ctx.breakers.snapshot().items()},
        "metrics": {m: s.model_dump(mode="json") for m, s in ctx.monitor.metrics().items()},
    }
