"""AWS Bedrock client wrapper for the forensics oracle."""

import asyncio
import logging
import os
from typing import Dict, List, Optional, Any

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from .errors import AnalysisError, handle_bedrock_error

logger = logging.getLogger(__name__)


class BedrockClient:
    """
    Wrapper for the AWS Bedrock Runtime Converse API.

    Only transport-level throttling is retried here, with exponential
    backoff and bounded by ``max_retries``. Any other failure surfaces
    immediately as an AnalysisError; retrying a submission is the caller's
    decision.
    """

    def __init__(
        self,
        region: str = "us-east-1",
        model_id: str = "amazon.nova-pro-v1:0",
        timeout: int = 60,
        max_retries: int = 1
    ):
        """
        Initialize Bedrock client.

        Args:
            region: AWS region for Bedrock service
            model_id: Vision-capable model ID
            timeout: Connect/read timeout in seconds
            max_retries: Maximum attempts for throttled calls
        """
        self.region = region
        self.model_id = model_id
        self.max_retries = max(1, max_retries)

        bearer_token = os.getenv("AWS_BEARER_TOKEN_BEDROCK") or os.getenv("BEDROCK_API_KEY")
        config_kwargs: Dict[str, Any] = {
            "region_name": region,
            "connect_timeout": timeout,
            "read_timeout": timeout,
            "retries": {"max_attempts": 0},  # We handle retries manually
        }

        if bearer_token:
            if not os.getenv("AWS_BEARER_TOKEN_BEDROCK"):
                os.environ["AWS_BEARER_TOKEN_BEDROCK"] = bearer_token.strip()
            config_kwargs["signature_version"] = "bearer"
            logger.info("BedrockClient configured to use Amazon Bedrock API key authentication")
        else:
            logger.info("BedrockClient configured to use AWS IAM credentials (SigV4)")

        self.runtime = boto3.client("bedrock-runtime", config=Config(**config_kwargs))

        logger.info(
            f"Initialized BedrockClient: region={region}, "
            f"model={model_id}, max_retries={self.max_retries}"
        )

    async def converse(
        self,
        messages: List[Dict[str, Any]],
        temperature: float = 0.1,
        max_tokens: int = 2048,
        system_prompts: Optional[List[Dict[str, Any]]] = None
    ) -> Dict[str, Any]:
        """
        Invoke the model via the Converse API.

        Args:
            messages: List of message dicts with 'role' and 'content'
            temperature: Sampling temperature
            max_tokens: Maximum tokens to generate
            system_prompts: Optional system prompts

        Returns:
            Parsed response dict with 'text', 'stop_reason', 'usage'

        Raises:
            AnalysisError: If the call fails
        """
        params: Dict[str, Any] = {
            "modelId": self.model_id,
            "messages": messages,
            "inferenceConfig": {
                "temperature": temperature,
                "maxTokens": max_tokens
            }
        }
        if system_prompts:
            params["system"] = system_prompts

        for attempt in range(self.max_retries):
            try:
                logger.debug(f"Invoking {self.model_id} (attempt {attempt + 1}/{self.max_retries})")

                response = await asyncio.to_thread(self.runtime.converse, **params)

                logger.info(
                    f"Bedrock invocation successful: "
                    f"stop_reason={response.get('stopReason')}, "
                    f"usage={response.get('usage')}"
                )
                return self._parse_converse_response(response)

            except ClientError as e:
                error_code = e.response.get("Error", {}).get("Code", "Unknown")

                if self._is_retryable_error(error_code) and attempt < self.max_retries - 1:
                    wait_time = 2 ** attempt
                    logger.info(f"Bedrock throttled ({error_code}), retrying in {wait_time} seconds...")
                    await asyncio.sleep(wait_time)
                    continue

                handle_bedrock_error(e, "converse", logger)

            except Exception as e:
                logger.error(f"Unexpected error invoking Bedrock: {str(e)}")
                raise AnalysisError.unavailable("converse", e) from e

        raise AnalysisError.unavailable(
            "converse",
            RuntimeError(f"no response after {self.max_retries} attempts")
        )

    def _parse_converse_response(self, response: Dict[str, Any]) -> Dict[str, Any]:
        """
        Parse Converse API response into a simplified format.

        Args:
            response: Raw response from Converse API

        Returns:
            Parsed response dict with 'text', 'stop_reason', 'usage'
        """
        message = response.get("output", {}).get("message", {})
        content = message.get("content", []) or []

        text_parts = [block["text"] for block in content if "text" in block]

        return {
            "text": "\n".join(text_parts),
            "stop_reason": response.get("stopReason", "unknown"),
            "usage": response.get("usage", {}),
        }

    def _is_retryable_error(self, error_code: str) -> bool:
        retryable_errors = {
            "ThrottlingException",
            "TooManyRequestsException",
            "ServiceUnavailableException",
        }
        return error_code in retryable_errors
