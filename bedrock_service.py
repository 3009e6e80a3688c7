"""
Amazon Bedrock service module.
Sends a chat prompt to a Claude model on Bedrock and returns the reply text.
"""

import boto3
import json
import logging
from typing import List, Dict, Optional, Any
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError
from dataclasses import dataclass
from config import aws_config, get_credentials_info, model_config


logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "bedrock-2023-05-31"


class BedrockError(Exception):
    """Custom exception for Bedrock service errors"""
    pass


@dataclass
class GenerationConfig:
    """Configuration for a single generation request"""
    max_tokens: int = 4096
    temperature: Optional[float] = None


@dataclass
class GenerationResult:
    """Result from a generation request"""
    content: str = ""
    stop_reason: Optional[str] = None
    input_tokens: int = 0
    output_tokens: int = 0


class BedrockService:
    """
    Service class for Amazon Bedrock interactions.
    """

    def __init__(
        self,
        model_id: Optional[str] = None,
        region: Optional[str] = None
    ):
        self.model_id = model_id or model_config.model_id
        self.region = region or aws_config.region

        self.client = self._create_client()
        creds = get_credentials_info()
        logger.info(
            f"BedrockService initialized with model: {self.model_id} "
            f"(region={self.region}, credentials={creds['source']})"
        )

    def _create_client(self) -> Any:
        """Create and configure the Bedrock runtime client"""
        try:
            session_kwargs = {"region_name": self.region}

            if aws_config.has_profile():
                session_kwargs["profile_name"] = aws_config.profile_name
            elif aws_config.has_explicit_credentials():
                session_kwargs["aws_access_key_id"] = aws_config.access_key_id
                session_kwargs["aws_secret_access_key"] = aws_config.secret_access_key
                if aws_config.has_session_token():
                    session_kwargs["aws_session_token"] = aws_config.session_token

            session = boto3.Session(**session_kwargs)
            return session.client("bedrock-runtime")

        except NoCredentialsError:
            raise BedrockError("AWS credentials not configured.")
        except (BotoCoreError, ValueError) as e:
            raise BedrockError(f"Failed to initialize Bedrock client: {e}")

    def _format_request_body(
        self,
        messages: List[Dict],
        system_prompt: Optional[str],
        config: GenerationConfig,
    ) -> Dict[str, Any]:
        """Format the request body for Anthropic Claude models"""
        body: Dict[str, Any] = {
            "anthropic_version": ANTHROPIC_VERSION,
            "max_tokens": config.max_tokens,
            "messages": [
                {"role": m["role"], "content": m["content"]}
                for m in messages
                if (m.get("content") or "").strip()
            ],
        }
        if system_prompt:
            body["system"] = system_prompt
        if config.temperature is not None:
            body["temperature"] = config.temperature
        return body

    def _parse_response(self, response_body: Dict) -> GenerationResult:
        """Parse the Anthropic response body into text and usage"""
        result = GenerationResult()

        try:
            for block in response_body.get("content", []):
                if block.get("type") == "text":
                    result.content += block.get("text", "")

            usage = response_body.get("usage", {})
            result.input_tokens = usage.get("input_tokens", 0)
            result.output_tokens = usage.get("output_tokens", 0)
            result.stop_reason = response_body.get("stop_reason")

        except (AttributeError, KeyError, TypeError) as e:
            logger.error(f"Error parsing response: {e}")
            raise BedrockError(f"Failed to parse model response: {e}")

        return result

    def generate_response(
        self,
        messages: List[Dict],
        system_prompt: Optional[str] = None,
        model_id: Optional[str] = None,
        config: Optional[GenerationConfig] = None,
    ) -> GenerationResult:
        """
        Generate a response using Amazon Bedrock.
        Blocking; the server calls it from a worker thread.
        """
        current_model = model_id or self.model_id
        gen_config = config or GenerationConfig(
            max_tokens=model_config.max_tokens,
            temperature=model_config.temperature,
        )

        try:
            request_body = self._format_request_body(messages, system_prompt, gen_config)

            logger.info(f"Invoking model: {current_model}")

            response = self.client.invoke_model(
                modelId=current_model,
                body=json.dumps(request_body),
                contentType="application/json",
                accept="application/json"
            )

            response_body = json.loads(response["body"].read())
            result = self._parse_response(response_body)
            logger.info(
                f"Model replied: stop_reason={result.stop_reason}, "
                f"tokens in={result.input_tokens} out={result.output_tokens}"
            )
            return result

        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            error_message = e.response.get('Error', {}).get('Message', str(e))
            logger.error(f"Bedrock API error: {error_code} - {error_message}")

            if error_code in ['ExpiredTokenException', 'InvalidSignatureException']:
                raise BedrockError("AWS credentials expired. Please refresh.")

            raise BedrockError(f"Bedrock API error: {error_message}")
        except BotoCoreError as e:
            logger.error(f"Bedrock transport error: {e}")
            raise BedrockError(f"Bedrock request failed: {e}")

    def complete(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        """Single-turn helper: answer one prompt and return the reply text."""
        result = self.generate_response(
            [{"role": "user", "content": prompt}],
            system_prompt=system_prompt or model_config.system_prompt,
        )
        if not result.content.strip():
            raise BedrockError(f"Model returned no text (stop_reason={result.stop_reason})")
        return result.content
