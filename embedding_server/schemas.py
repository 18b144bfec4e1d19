"""Request bodies accepted by the HTTP API."""
from typing import Any, List, Type, TypeVar

from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from embedding_server import config
from embedding_server.errors import ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


def _not_blank(value: str) -> str:
    if not value.strip():
        raise ValueError("cannot be empty")
    return value


class EmbedRequest(BaseModel):
    text: str

    @field_validator("text")
    @classmethod
    def text_not_blank(cls, value: str) -> str:
        return _not_blank(value)


class EmbedBatchRequest(BaseModel):
    texts: List[str] = Field(min_length=1)

    @field_validator("texts")
    @classmethod
    def texts_not_blank(cls, value: List[str]) -> List[str]:
        for text in value:
            _not_blank(text)
        return value


class SearchRequest(BaseModel):
    query: str
    top_k: int = Field(default=config.SEARCH_TOP_K, ge=1)

    @field_validator("query")
    @classmethod
    def query_not_blank(cls, value: str) -> str:
        return _not_blank(value)


class RAGRequest(BaseModel):
    question: str
    use_retrieval: bool = True
    top_k: int = Field(default=config.RAG_TOP_K, ge=1)

    @field_validator("question")
    @classmethod
    def question_not_blank(cls, value: str) -> str:
        return _not_blank(value)


class AskRequest(BaseModel):
    question: str
    top_k: int = Field(default=config.RAG_TOP_K, ge=1)

    @field_validator("question")
    @classmethod
    def question_not_blank(cls, value: str) -> str:
        return _not_blank(value)


class DocumentUploadRequest(BaseModel):
    file_name: str
    content: str

    @field_validator("content")
    @classmethod
    def content_not_blank(cls, value: str) -> str:
        return _not_blank(value)

    @field_validator("file_name")
    @classmethod
    def markdown_only(cls, value: str) -> str:
        _not_blank(value)
        if not value.lower().endswith(".md"):
            raise ValueError("only .md files are supported")
        return value


def parse_body(model: Type[ModelT], data: Any) -> ModelT:
    """Validate a JSON body, raising the server's ValidationError on failure."""
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise ValidationError(
            f"Invalid request: {location}: {first['msg']}",
            details=str(e),
        ) from e
