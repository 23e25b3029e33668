"""
Configuration module for Bedrock Workbench.
Handles environment variables, model specifications, and checker/session settings.
"""

import os
import shlex
from dataclasses import dataclass, field
from typing import List, Optional, Tuple
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

_PACKAGE_ROOT = os.path.dirname(os.path.abspath(__file__))


def parse_command_list(raw: str) -> List[List[str]]:
    """Split a `;`-separated list of shell-quoted commands into argv lists.

    "mvn test compile" -> [["mvn", "test", "compile"]]
    "mvn -q compile; mvn -q test" -> [["mvn", "-q", "compile"], ["mvn", "-q", "test"]]
    """
    commands = []
    for chunk in raw.split(";"):
        argv = shlex.split(chunk)
        if argv:
            commands.append(argv)
    return commands


@dataclass
class AWSConfig:
    """AWS-specific configuration"""
    region: str = os.getenv("AWS_REGION", "us-east-1")
    access_key_id: str = os.getenv("AWS_ACCESS_KEY_ID", "")
    secret_access_key: str = os.getenv("AWS_SECRET_ACCESS_KEY", "")
    session_token: str = os.getenv("AWS_SESSION_TOKEN", "")
    profile_name: str = os.getenv("AWS_PROFILE", "")

    def has_explicit_credentials(self) -> bool:
        return bool(self.access_key_id and self.secret_access_key)

    def has_session_token(self) -> bool:
        return bool(self.session_token)

    def has_profile(self) -> bool:
        return bool(self.profile_name)


@dataclass
class ModelConfig:
    """Model-specific configuration"""
    model_id: str = os.getenv("BEDROCK_MODEL_ID", "us.anthropic.claude-sonnet-4-5-20250929-v1:0")
    max_tokens: int = int(os.getenv("MAX_TOKENS", "16000"))
    temperature: Optional[float] = float(os.getenv("TEMPERATURE", "1")) if os.getenv("TEMPERATURE") else None
    throughput_mode: str = os.getenv("THROUGHPUT_MODE", "cross-region")

    # Off by default; thinking blocks must be replayed with every assistant turn
    enable_thinking: bool = os.getenv("ENABLE_THINKING", "false").lower() == "true"
    thinking_budget: int = int(os.getenv("THINKING_BUDGET", "8000"))


@dataclass
class AppConfig:
    """Application-specific configuration"""
    title: str = "Bedrock Workbench"
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Session turn loop
    max_turns: int = int(os.getenv("MAX_TURNS", "30"))
    final_check_repairs: int = int(os.getenv("FINAL_CHECK_REPAIRS", "2"))
    max_tool_output_chars: int = int(os.getenv("MAX_TOOL_OUTPUT_CHARS", "20000"))

    # Transport recovery (model and sandbox)
    model_max_retries: int = int(os.getenv("MODEL_MAX_RETRIES", "3"))
    model_retry_backoff: float = float(os.getenv("MODEL_RETRY_BACKOFF", "2"))
    check_max_retries: int = int(os.getenv("CHECK_MAX_RETRIES", "3"))
    check_retry_backoff: float = float(os.getenv("CHECK_RETRY_BACKOFF", "2"))
    check_timeout: int = int(os.getenv("CHECK_TIMEOUT", "900"))

    # Checker sandbox
    sandbox_runtime: str = os.getenv("SANDBOX_RUNTIME", "docker")
    docker_binary: str = os.getenv("DOCKER_BINARY", "docker")
    checker_image: str = os.getenv("CHECKER_IMAGE", "maven:3.9.9-eclipse-temurin-17")
    checker_cache_key: str = os.getenv("CHECKER_CACHE_KEY", "m2_cache")
    checker_cache_path: str = os.getenv("CHECKER_CACHE_PATH", "/root/.m2")
    checker_workdir: str = os.getenv("CHECKER_WORKDIR", "/app")
    checker_commands: List[List[str]] = field(
        default_factory=lambda: parse_command_list(os.getenv("CHECKER_COMMANDS", "mvn test compile"))
    )
    local_cache_root: str = os.getenv(
        "LOCAL_CACHE_ROOT",
        os.path.join(os.path.expanduser("~"), ".cache", "bedrock-workbench"),
    )

    # Prompts and artifacts
    prompts_dir: str = os.getenv("PROMPTS_DIR", os.path.join(_PACKAGE_ROOT, "resources", "prompts"))
    rationale_filename: str = os.getenv("RATIONALE_FILENAME", ".workbench-notes.md")


# ============================================================
# Model specifications (Anthropic Claude on Bedrock)
# Only models with tool_use support can drive a session.
# ============================================================

@dataclass(frozen=True)
class ModelSpec:
    id: str
    base_id: str
    name: str
    max_output_tokens: int = 8192
    requires_profile: bool = False
    thinking_max_budget: int = 0  # 0 = no extended thinking
    cache_ttls: Tuple[str, ...] = ()  # empty = no prompt caching

    @property
    def supports_thinking(self) -> bool:
        return self.thinking_max_budget > 0

    @property
    def supports_caching(self) -> bool:
        return bool(self.cache_ttls)


MODEL_SPECS: Tuple[ModelSpec, ...] = (
    ModelSpec(
        id="us.anthropic.claude-sonnet-4-5-20250929-v1:0",
        base_id="anthropic.claude-sonnet-4-5-20250929-v1:0",
        name="Claude Sonnet 4.5",
        max_output_tokens=64000,
        requires_profile=True,
        thinking_max_budget=64000,
        cache_ttls=("5m", "1h"),
    ),
    ModelSpec(
        id="us.anthropic.claude-haiku-4-5-20251001-v1:0",
        base_id="anthropic.claude-haiku-4-5-20251001-v1:0",
        name="Claude Haiku 4.5",
        max_output_tokens=64000,
        requires_profile=True,
        thinking_max_budget=64000,
        cache_ttls=("5m", "1h"),
    ),
    ModelSpec(
        id="anthropic.claude-3-5-sonnet-20241022-v2:0",
        base_id="anthropic.claude-3-5-sonnet-20241022-v2:0",
        name="Claude 3.5 Sonnet v2",
        cache_ttls=("5m",),
    ),
)


def model_spec(model_id: str) -> ModelSpec:
    """Spec for a profile or base model ID. Unknown IDs get conservative defaults."""
    for spec in MODEL_SPECS:
        if model_id in (spec.id, spec.base_id):
            return spec
    return ModelSpec(id=model_id, base_id=model_id, name=model_id)


# Create global config instances
aws_config = AWSConfig()
model_config = ModelConfig()
app_config = AppConfig()


def get_credentials_info() -> str:
    if aws_config.has_profile():
        return f"Using AWS profile: {aws_config.profile_name}"
    elif aws_config.has_explicit_credentials():
        if aws_config.has_session_token():
            return "Using temporary credentials (with session token)"
        return "Using explicit credentials"
    return "Using default credential chain"
