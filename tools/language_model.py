"""
Language Model Handler - Ollama HTTP API
"""

import json
import re
from typing import Optional

import requests

from config.environments import current_config
from utils.errors import LLMError
from utils.logger import get_logger

log = get_logger("llm")


class LanguageModel:
    def __init__(self, base_url: str = None, model: str = None, timeout: int = 30):
        self.base_url = (base_url or current_config.OLLAMA_URL).rstrip('/')
        self.url = f"{self.base_url}/api/generate"
        self.model = model or current_config.OLLAMA_MODEL
        self.timeout = timeout

    def generate(self, prompt: str, max_tokens: int = 512, temperature: float = 0.7, model: str = None) -> str:
        """Generate a completion; raises LLMError when Ollama is unreachable or errors"""
        try:
            response = requests.post(
                self.url,
                json={
                    "model": model or self.model,
                    "prompt": prompt,
                    "stream": False,
                    "options": {
                        "temperature": temperature,
                        "num_predict": max_tokens
                    }
                },
                timeout=self.timeout
            )
        except requests.RequestException as e:
            raise LLMError(f"Ollama request failed: {e}") from e

        if response.status_code != 200:
            raise LLMError(f"Ollama error: HTTP {response.status_code}")

        return response.json().get("response", "")

    def generate_json(self, prompt: str, max_tokens: int = 512, temperature: float = 0.2, model: str = None) -> Optional[dict]:
        """Generate and parse a JSON object; None when the output is not JSON"""
        text = self.generate(prompt, max_tokens=max_tokens, temperature=temperature, model=model)
        return extract_json(text)

    def list_models(self) -> list:
        response = requests.get(f"{self.base_url}/api/tags", timeout=5)
        response.raise_for_status()
        return [m['name'] for m in response.json().get('models', [])]


def extract_json(text: str) -> Optional[dict]:
    """First JSON object found in model output"""
    if not text:
        return None

    try:
        parsed = json.loads(text)
        return parsed if isinstance(parsed, dict) else None
    except json.JSONDecodeError:
        pass

    match = re.search(r"\{.*\}", text, re.DOTALL)
    if not match:
        return None

    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError:
        log.debug("Model output is not valid JSON", output=text[:200])
        return None

    return parsed if isinstance(parsed, dict) else None


# Shared instance
llm = LanguageModel()
