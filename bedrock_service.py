"""
Amazon Bedrock service module.
Sends agent-session turns to Claude on Bedrock (Messages API with tool use).
"""

import boto3
import json
import logging
from typing import List, Dict, Optional, Any
from botocore.exceptions import ClientError, NoCredentialsError, BotoCoreError
from dataclasses import dataclass, field
from config import aws_config, model_config, model_spec, get_credentials_info, ModelSpec
from dotenv import load_dotenv


logger = logging.getLogger(__name__)
env_path = '.env'

ANTHROPIC_VERSION = "bedrock-2023-05-31"

# Error codes worth another attempt: throttling and transient service faults
_RETRYABLE_CODES = {
    "ThrottlingException",
    "ServiceUnavailableException",
    "ModelNotReadyException",
    "InternalServerException",
    "ModelTimeoutException",
}
_CREDENTIAL_CODES = {"ExpiredTokenException", "InvalidSignatureException"}


class BedrockError(Exception):
    """Model call failure. retryable marks throttling and transport faults."""

    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


@dataclass
class GenerationConfig:
    """Per-request generation settings"""
    max_tokens: int = 16000
    temperature: Optional[float] = None
    stop_sequences: Optional[List[str]] = None
    throughput_mode: str = "cross-region"  # cross-region | on-demand
    enable_thinking: bool = False
    thinking_budget: int = 8000

    @classmethod
    def from_model_config(cls) -> "GenerationConfig":
        return cls(
            max_tokens=model_config.max_tokens,
            temperature=model_config.temperature,
            throughput_mode=model_config.throughput_mode,
            enable_thinking=model_config.enable_thinking,
            thinking_budget=model_config.thinking_budget,
        )


@dataclass
class ToolUseBlock:
    id: str = ""
    name: str = ""
    input: Dict = field(default_factory=dict)


@dataclass
class GenerationResult:
    """One model turn.

    content is the concatenated text; content_blocks keeps every block
    (thinking, text, tool_use) in order so the turn can be replayed verbatim
    as the assistant message.
    """
    content: str = ""
    tool_uses: List[ToolUseBlock] = field(default_factory=list)
    content_blocks: List[Dict] = field(default_factory=list)
    stop_reason: Optional[str] = None
    input_tokens: int = 0
    output_tokens: int = 0


class BedrockService:
    """
    Thin client over bedrock-runtime invoke_model.
    One call per session turn; the session owns the conversation history.
    """

    def __init__(self, model_id: Optional[str] = None, region: Optional[str] = None):
        self.model_id = model_id or model_config.model_id
        self.region = region or aws_config.region
        self.client = self._create_client()
        logger.info(f"BedrockService ready: {self.model_id} in {self.region} ({get_credentials_info()})")

    def _session_kwargs(self) -> Dict[str, str]:
        kwargs = {"region_name": self.region}
        if aws_config.has_profile():
            kwargs["profile_name"] = aws_config.profile_name
        elif aws_config.has_explicit_credentials():
            kwargs["aws_access_key_id"] = aws_config.access_key_id
            kwargs["aws_secret_access_key"] = aws_config.secret_access_key
            if aws_config.has_session_token():
                kwargs["aws_session_token"] = aws_config.session_token
        return kwargs

    def _create_client(self) -> Any:
        load_dotenv(env_path, override=True)
        try:
            return boto3.Session(**self._session_kwargs()).client("bedrock-runtime")
        except NoCredentialsError:
            raise BedrockError("AWS credentials not configured.")
        except BotoCoreError as e:
            raise BedrockError(f"Failed to initialize Bedrock client: {e}")

    def _invocation_id(self, spec: ModelSpec, config: GenerationConfig) -> str:
        """Model ID to invoke: an inference profile in cross-region mode, else the base ID."""
        if config.throughput_mode != "cross-region":
            return spec.base_id
        if spec.id.startswith(("us.", "eu.", "ap.")):
            return spec.id
        if spec.requires_profile:
            prefix = "eu" if self.region.startswith("eu-") else "us"
            return f"{prefix}.{spec.base_id}"
        return spec.base_id

    @staticmethod
    def _cache_control(spec: ModelSpec) -> Dict[str, Any]:
        ctrl: Dict[str, Any] = {"type": "ephemeral"}
        if "1h" in spec.cache_ttls:
            ctrl["ttl"] = "1h"
        return ctrl

    def _request_body(
        self,
        messages: List[Dict],
        system_prompt: Optional[str],
        spec: ModelSpec,
        config: GenerationConfig,
        tools: Optional[List[Dict]] = None,
    ) -> Dict[str, Any]:
        max_tokens = min(config.max_tokens, spec.max_output_tokens)
        body: Dict[str, Any] = {
            "anthropic_version": ANTHROPIC_VERSION,
            "max_tokens": max_tokens,
            "messages": [m for m in messages if m["role"] != "system"],
        }

        if config.enable_thinking and spec.supports_thinking:
            # budget_tokens must leave room for the visible reply
            budget = min(config.thinking_budget, spec.thinking_max_budget, max(max_tokens - 4000, 1024))
            body["thinking"] = {"type": "enabled", "budget_tokens": budget}
        elif config.temperature is not None:
            body["temperature"] = config.temperature
        if config.stop_sequences:
            body["stop_sequences"] = config.stop_sequences

        # System prompt and tool list are the same on every turn: cache breakpoints
        cache = self._cache_control(spec) if spec.supports_caching else None
        if system_prompt:
            if cache:
                body["system"] = [{"type": "text", "text": system_prompt, "cache_control": cache}]
            else:
                body["system"] = system_prompt
        if tools:
            body["tools"] = list(tools)
            if cache:
                body["tools"][-1] = {**tools[-1], "cache_control": cache}

        logger.debug(f"Request body keys: {list(body.keys())}, caching: {cache is not None}")
        return body

    @staticmethod
    def _parse_response(response_body: Dict) -> GenerationResult:
        result = GenerationResult(stop_reason=response_body.get("stop_reason"))
        try:
            for block in response_body.get("content", []):
                kind = block.get("type", "")
                if kind == "text":
                    result.content += block.get("text", "")
                elif kind == "tool_use":
                    result.tool_uses.append(ToolUseBlock(
                        id=block.get("id", ""),
                        name=block.get("name", ""),
                        input=block.get("input") or {},
                    ))
                elif kind not in ("thinking", "redacted_thinking"):
                    continue
                result.content_blocks.append(block)
            usage = response_body.get("usage", {})
            result.input_tokens = usage.get("input_tokens", 0)
            result.output_tokens = usage.get("output_tokens", 0)
        except (AttributeError, KeyError, TypeError) as e:
            logger.error(f"Unexpected response shape: {e}")
            raise BedrockError(f"Failed to parse model response: {e}")
        return result

    def generate_response(
        self,
        messages: List[Dict],
        system_prompt: Optional[str] = None,
        model_id: Optional[str] = None,
        config: Optional[GenerationConfig] = None,
        tools: Optional[List[Dict]] = None,
    ) -> GenerationResult:
        """Run one turn. Raises BedrockError; check .retryable before retrying."""
        spec = model_spec(model_id or self.model_id)
        config = config or GenerationConfig.from_model_config()
        invocation_id = self._invocation_id(spec, config)
        body = self._request_body(messages, system_prompt, spec, config, tools=tools)

        logger.info(f"Invoking model: {invocation_id}")
        try:
            response = self.client.invoke_model(
                modelId=invocation_id,
                body=json.dumps(body),
                contentType="application/json",
                accept="application/json",
            )
            response_body = json.loads(response["body"].read())
        except ClientError as e:
            error = e.response.get("Error", {})
            code = error.get("Code", "Unknown")
            logger.error(f"Bedrock API error: {code} - {error.get('Message', e)}")
            if code in _CREDENTIAL_CODES:
                raise BedrockError("AWS credentials expired. Please refresh.")
            raise BedrockError(f"Bedrock API error: {error.get('Message', e)}", retryable=code in _RETRYABLE_CODES)
        except BotoCoreError as e:
            # connection resets, read timeouts, endpoint errors
            logger.error(f"Bedrock transport error: {e}")
            raise BedrockError(f"Bedrock transport error: {e}", retryable=True)

        return self._parse_response(response_body)
