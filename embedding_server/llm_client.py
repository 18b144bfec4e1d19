"""Ollama client implementing the embedding gateway."""
import json
import httpx
from typing import Any, List, Dict, Optional
import structlog

from embedding_server import config
from embedding_server.errors import EmptyResult, UpstreamTimeout, UpstreamUnavailable
from embedding_server.rag.gateway import EmbeddingGateway

logger = structlog.get_logger()

GROUNDED_SYSTEM_PROMPT = (
    "You are an assistant that answers questions using the provided context. "
    "If the context does not contain enough information, say so honestly.\n"
    "Context:\n{context}"
)

GENERAL_SYSTEM_PROMPT = (
    "You are a helpful assistant. Answer questions using your own knowledge."
)


class OllamaClient(EmbeddingGateway):
    """Async client for the Ollama embed and chat APIs."""

    def __init__(
        self,
        base_url: str = None,
        embedding_model: str = None,
        chat_model: str = None,
        embed_timeout: float = None,
        generate_timeout: float = None,
        connect_timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize Ollama client.

        Args:
            base_url: Ollama API base URL (defaults to config.OLLAMA_BASE_URL)
            embedding_model: Model used by embed (defaults to config.EMBEDDING_MODEL)
            chat_model: Model used by generate (defaults to config.CHAT_MODEL)
            embed_timeout: Read timeout for embed requests in seconds
            generate_timeout: Read timeout for chat requests in seconds
            connect_timeout: Connect timeout for every request in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = (base_url or config.OLLAMA_BASE_URL).rstrip("/")
        self.embedding_model = embedding_model or config.EMBEDDING_MODEL
        self.chat_model = chat_model or config.CHAT_MODEL
        connect = connect_timeout or config.OLLAMA_CONNECT_TIMEOUT
        self.embed_timeout = httpx.Timeout(
            embed_timeout or config.OLLAMA_EMBED_TIMEOUT, connect=connect
        )
        self.generate_timeout = httpx.Timeout(
            generate_timeout or config.OLLAMA_GENERATE_TIMEOUT, connect=connect
        )
        self.probe_timeout = httpx.Timeout(config.OLLAMA_PROBE_TIMEOUT)
        self.transport = transport

    def _client(self, timeout: httpx.Timeout) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self.transport)

    async def embed(self, text: str) -> List[float]:
        """Generate the embedding for a text.

        Args:
            text: Text to embed

        Returns:
            Raw (unnormalized) embedding vector

        Raises:
            UpstreamUnavailable: If Ollama is unreachable or returns an error status
            UpstreamTimeout: If the request exceeds the embed timeout
            EmptyResult: If Ollama returns no embedding
        """
        payload = {"model": self.embedding_model, "input": text}

        logger.debug(
            "ollama_embedding_request",
            model=self.embedding_model,
            text_length=len(text),
            estimated_tokens=len(text) // config.CHARS_PER_TOKEN,
        )

        try:
            async with self._client(self.embed_timeout) as client:
                response = await client.post(f"{self.base_url}/api/embed", json=payload)
                response.raise_for_status()
                data = response.json()

        except httpx.TimeoutException as e:
            logger.error("ollama_embedding_timeout", error=str(e), model=self.embedding_model)
            raise UpstreamTimeout("Embedding request timed out", details=str(e)) from e
        except httpx.HTTPStatusError as e:
            logger.error(
                "ollama_embedding_error",
                status_code=e.response.status_code,
                body=e.response.text[:500],
            )
            raise UpstreamUnavailable(
                f"Ollama API error: {e.response.status_code}",
                details=e.response.text[:500],
            ) from e
        except httpx.HTTPError as e:
            logger.error("ollama_connection_error", error=str(e), base_url=self.base_url)
            raise UpstreamUnavailable("Ollama is unreachable", details=str(e)) from e
        except ValueError as e:
            logger.error("ollama_embedding_invalid_json", error=str(e))
            raise EmptyResult("Ollama returned an unreadable embedding response") from e

        embedding = self._first_embedding(data)

        if not embedding:
            logger.error("ollama_empty_embedding", model=self.embedding_model)
            raise EmptyResult("No embeddings returned from Ollama")

        logger.debug(
            "ollama_embedding_response",
            model=self.embedding_model,
            dimension=len(embedding),
        )

        return [float(value) for value in embedding]

    @staticmethod
    def _first_embedding(data: Any) -> Optional[List[Any]]:
        """First vector of an /api/embed body, or None if the body is malformed."""
        if not isinstance(data, dict):
            return None
        embeddings = data.get("embeddings")
        if not isinstance(embeddings, list) or not embeddings:
            return None
        embedding = embeddings[0]
        if not isinstance(embedding, list):
            return None
        if not all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in embedding):
            return None
        return embedding

    def build_messages(self, question: str, context: Optional[str]) -> List[Dict[str, str]]:
        """Build the system and user messages for a chat request."""
        if context is not None:
            system_content = GROUNDED_SYSTEM_PROMPT.format(context=context)
        else:
            system_content = GENERAL_SYSTEM_PROMPT

        return [
            {"role": "system", "content": system_content},
            {"role": "user", "content": question},
        ]

    async def generate(self, question: str, context: Optional[str] = None) -> str:
        """Generate an answer, optionally grounded on a context block.

        Ollama streams newline-delimited JSON objects; the answer is the
        concatenation of every ``message.content`` in arrival order.

        Args:
            question: User question
            context: Grounding context, or None to answer from general knowledge

        Returns:
            Complete answer text

        Raises:
            UpstreamUnavailable: If Ollama is unreachable or returns an error status
            UpstreamTimeout: If the request exceeds the generate timeout
            EmptyResult: If the streamed answer is empty
        """
        payload = {
            "model": self.chat_model,
            "messages": self.build_messages(question, context),
            "stream": True,
        }

        logger.info(
            "ollama_chat_request",
            model=self.chat_model,
            question_preview=question[:100],
            context_length=len(context) if context is not None else 0,
        )

        fragments: List[str] = []

        try:
            async with self._client(self.generate_timeout) as client:
                async with client.stream(
                    "POST", f"{self.base_url}/api/chat", json=payload
                ) as response:
                    if response.is_error:
                        body = (await response.aread()).decode("utf-8", "replace")
                        logger.error(
                            "ollama_chat_error",
                            status_code=response.status_code,
                            body=body[:500],
                        )
                        raise UpstreamUnavailable(
                            f"Ollama API error: {response.status_code}",
                            details=body[:500],
                        )

                    async for line in response.aiter_lines():
                        if not line.strip():
                            continue
                        try:
                            data = json.loads(line)
                        except json.JSONDecodeError:
                            logger.warning("ollama_chat_line_unparsed", line_preview=line[:100])
                            continue

                        if not isinstance(data, dict):
                            logger.error("ollama_chat_line_invalid", line_preview=line[:100])
                            raise UpstreamUnavailable(
                                "Ollama sent a malformed chat response", details=line[:500]
                            )

                        # Ollama reports mid-stream failures with a 200 status
                        if "error" in data:
                            logger.error(
                                "ollama_chat_stream_error",
                                error=str(data["error"]),
                                fragments_received=len(fragments),
                            )
                            raise UpstreamUnavailable(
                                "Ollama reported an error while generating",
                                details=str(data["error"]),
                            )

                        if "message" in data:
                            message = data["message"]
                            if not isinstance(message, dict):
                                logger.error("ollama_chat_line_invalid", line_preview=line[:100])
                                raise UpstreamUnavailable(
                                    "Ollama sent a malformed chat message", details=line[:500]
                                )
                            fragments.append(str(message.get("content") or ""))

                        if data.get("done"):
                            break

        except httpx.TimeoutException as e:
            logger.error("ollama_chat_timeout", error=str(e), model=self.chat_model)
            raise UpstreamTimeout("Generation request timed out", details=str(e)) from e
        except httpx.HTTPError as e:
            logger.error("ollama_connection_error", error=str(e), base_url=self.base_url)
            raise UpstreamUnavailable("Ollama is unreachable", details=str(e)) from e

        answer = "".join(fragments)

        if not answer:
            logger.error("empty_ollama_response", model=self.chat_model)
            raise EmptyResult("Empty response from LLM")

        logger.info(
            "ollama_chat_response",
            model=self.chat_model,
            response_length=len(answer),
            fragments=len(fragments),
        )

        return answer

    async def list_models(self) -> List[str]:
        """List all available Ollama models.

        Returns:
            List of model names

        Raises:
            httpx.HTTPError: On API errors
        """
        async with self._client(self.probe_timeout) as client:
            response = await client.get(f"{self.base_url}/api/tags")
            response.raise_for_status()
            data = response.json()
            return [m["name"] for m in data.get("models", [])]

    async def is_available(self) -> bool:
        """Check whether Ollama answers on /api/tags."""
        try:
            await self.list_models()
            return True
        except Exception as e:
            logger.warning(
                "ollama_unavailable",
                error=str(e),
                error_type=type(e).__name__,
                base_url=self.base_url,
            )
            return False
