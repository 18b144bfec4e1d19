"""Main Quart application for the embedding server."""
import logging
from dataclasses import dataclass
from typing import Optional

from quart import Blueprint, Quart, current_app, jsonify, request
import structlog

from embedding_server import config
from embedding_server.db import Database
from embedding_server.errors import EmbeddingServerError, ErrorKind, ValidationError, NotFoundError
from embedding_server.llm_client import OllamaClient
from embedding_server.rag.gateway import EmbeddingGateway
from embedding_server.rag.ingest import IngestPipeline
from embedding_server.rag.orchestrator import RAGOrchestrator
from embedding_server.rag.store import (
    DocumentStore,
    EmbeddingStore,
    InMemoryEmbeddingStore,
    SQLiteEmbeddingStore,
)
from embedding_server.schemas import (
    AskRequest,
    DocumentUploadRequest,
    EmbedBatchRequest,
    EmbedRequest,
    RAGRequest,
    SearchRequest,
    parse_body,
)

# Configure structured logging
logging.basicConfig(format="%(message)s", level=config.LOG_LEVEL)
structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = structlog.get_logger()

STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.EMPTY_RESULT: 502,
    ErrorKind.UPSTREAM_UNAVAILABLE: 503,
    ErrorKind.UPSTREAM_TIMEOUT: 504,
    ErrorKind.DIMENSION_MISMATCH: 500,
}


@dataclass
class Services:
    """Components shared by the request handlers."""

    database: Database
    gateway: EmbeddingGateway
    embedding_store: EmbeddingStore
    document_store: DocumentStore
    pipeline: IngestPipeline
    orchestrator: RAGOrchestrator


def build_services(
    database: Database,
    gateway: EmbeddingGateway,
    embedding_store: Optional[EmbeddingStore] = None,
) -> Services:
    """Wire stores, pipeline and orchestrator around a database and gateway."""
    if embedding_store is None:
        if config.EMBEDDING_STORE == "memory":
            embedding_store = InMemoryEmbeddingStore()
        else:
            embedding_store = SQLiteEmbeddingStore(database)

    document_store = DocumentStore(database)
    pipeline = IngestPipeline(
        gateway,
        embedding_store=embedding_store,
        document_store=document_store,
    )
    orchestrator = RAGOrchestrator(
        gateway,
        pipeline,
        embedding_store=embedding_store,
        document_store=document_store,
    )
    return Services(
        database=database,
        gateway=gateway,
        embedding_store=embedding_store,
        document_store=document_store,
        pipeline=pipeline,
        orchestrator=orchestrator,
    )


def services() -> Services:
    return current_app.extensions["embedding_server"]


def parse_id(value: str, label: str = "ID") -> int:
    """Parse a path id, rejecting anything that is not a non-negative integer."""
    if not value.isdigit():
        raise ValidationError(f"Invalid {label}", details=value)
    return int(value)


async def json_body():
    return await request.get_json(silent=True)


api = Blueprint("api", __name__)


# Embeddings

@api.route("/api/embed", methods=["POST"])
async def embed():
    """Embed a text and store the result.

    Expects JSON body: {"text": "..."}
    """
    body = parse_body(EmbedRequest, await json_body())
    result = await services().pipeline.embed_text(body.text)
    return jsonify(result.to_dict())


@api.route("/api/embed/batch", methods=["POST"])
async def embed_batch():
    """Embed and store several texts.

    Expects JSON body: {"texts": ["...", "..."]}
    """
    body = parse_body(EmbedBatchRequest, await json_body())
    results = await services().pipeline.embed_batch(body.texts)
    return jsonify({"results": [r.to_dict() for r in results]})


@api.route("/api/embed/query", methods=["POST"])
async def embed_query():
    """Embed a text without storing it."""
    body = parse_body(EmbedRequest, await json_body())
    result = await services().pipeline.embed_text(body.text, save=False)
    return jsonify(result.to_dict())


@api.route("/api/search", methods=["POST"])
async def search():
    """Semantic search over stored embeddings.

    Expects JSON body: {"query": "...", "top_k": 5}
    """
    body = parse_body(SearchRequest, await json_body())
    hits = await services().orchestrator.search(body.query, body.top_k)
    return jsonify({"query": body.query, "results": [h.to_dict() for h in hits]})


@api.route("/api/rag", methods=["POST"])
async def rag():
    """Answer a question, grounded on stored embeddings when enabled.

    Expects JSON body: {"question": "...", "use_retrieval": true, "top_k": 3}
    """
    body = parse_body(RAGRequest, await json_body())
    result = await services().orchestrator.answer(
        body.question, top_k=body.top_k, use_retrieval=body.use_retrieval
    )
    return jsonify(result.to_dict())


@api.route("/api/embeddings", methods=["GET"])
async def list_embeddings():
    records = services().embedding_store.find_all()
    return jsonify([r.to_dict() for r in records])


@api.route("/api/embeddings/<record_id>", methods=["GET"])
async def get_embedding(record_id: str):
    record = services().embedding_store.find_by_id(parse_id(record_id))
    if record is None:
        raise NotFoundError("Embedding not found")
    return jsonify(record.to_dict())


@api.route("/api/embeddings/<record_id>", methods=["DELETE"])
async def delete_embedding(record_id: str):
    record_id = parse_id(record_id)
    if not services().embedding_store.delete(record_id):
        raise NotFoundError("Embedding not found")
    return jsonify({"deleted": True, "id": record_id})


# Documents

@api.route("/api/documents/upload", methods=["POST"])
async def upload_document():
    """Upload a markdown document, chunk and embed it.

    Expects JSON body: {"file_name": "notes.md", "content": "..."}
    """
    body = parse_body(DocumentUploadRequest, await json_body())
    upload = await services().pipeline.ingest_document(body.file_name, body.content)
    return jsonify(upload.to_dict()), 201


@api.route("/api/documents", methods=["GET"])
async def list_documents():
    documents = services().document_store.find_all_documents()
    return jsonify([d.to_dict() for d in documents])


@api.route("/api/documents/stats", methods=["GET"])
async def document_stats():
    store = services().document_store
    return jsonify({
        "total_documents": store.count_documents(),
        "total_chunks": store.count_chunks(),
    })


@api.route("/api/documents/ask", methods=["POST"])
async def ask_documents():
    """Answer a question from document chunks, returning linked sources.

    Expects JSON body: {"question": "...", "top_k": 3}
    """
    body = parse_body(AskRequest, await json_body())
    result = await services().orchestrator.answer_from_documents(body.question, top_k=body.top_k)
    return jsonify(result.to_dict(base_url=request.host_url))


@api.route("/api/documents/<document_id>", methods=["GET"])
async def get_document(document_id: str):
    document = services().document_store.find_document(parse_id(document_id, "document ID"))
    if document is None:
        raise NotFoundError("Document not found")
    return jsonify(document.to_dict())


@api.route("/api/documents/<document_id>/chunks", methods=["GET"])
async def get_document_chunks(document_id: str):
    store = services().document_store
    document_id = parse_id(document_id, "document ID")
    if store.find_document(document_id) is None:
        raise NotFoundError("Document not found")
    return jsonify([c.to_dict() for c in store.find_chunks_by_document(document_id)])


@api.route("/api/documents/<document_id>/chunks/<chunk_index>", methods=["GET"])
async def get_document_chunk(document_id: str, chunk_index: str):
    chunk = services().document_store.find_chunk(
        parse_id(document_id, "document ID"), parse_id(chunk_index, "chunk index")
    )
    if chunk is None:
        raise NotFoundError("Chunk not found")
    return jsonify(chunk.to_dict())


@api.route("/api/documents/<document_id>", methods=["DELETE"])
async def delete_document(document_id: str):
    document_id = parse_id(document_id, "document ID")
    if not services().document_store.delete_document(document_id):
        raise NotFoundError("Document not found")
    return jsonify({"deleted": True, "id": document_id})


# Service

@api.route("/api/stats", methods=["GET"])
async def stats():
    svc = services()
    return jsonify({
        "total_embeddings": svc.embedding_store.count(),
        "chunk_settings": svc.pipeline.chunker.settings(),
        "normalization": "L2 to [-1, 1]",
    })


@api.route("/api/health", methods=["GET"])
async def health():
    """Readiness probe - checks Ollama and the database."""
    svc = services()
    checks = {
        "ollama": await svc.gateway.is_available(),
        "database": svc.database.ping(),
    }
    healthy = all(checks.values())
    checks["status"] = "healthy" if healthy else "degraded"
    return jsonify(checks), 200 if healthy else 503


@api.route("/health/live", methods=["GET"])
async def health_live():
    """Liveness probe - check if app is running."""
    return jsonify({"status": "alive"}), 200


def create_app(
    database: Optional[Database] = None,
    gateway: Optional[EmbeddingGateway] = None,
    embedding_store: Optional[EmbeddingStore] = None,
) -> Quart:
    """Create the Quart application.

    The database connection is opened before serving and closed after.

    Args:
        database: Database handle (default: file at config.DB_PATH)
        gateway: Embedding backend (default: OllamaClient from config)
        embedding_store: Store for standalone embeddings (default per config)
    """
    app = Quart(__name__)
    database = database or Database(config.DB_PATH)
    gateway = gateway or OllamaClient()
    app.extensions["embedding_server"] = build_services(database, gateway, embedding_store)
    app.register_blueprint(api)

    @app.before_serving
    async def startup():
        database.init()
        logger.info("embedding_server_started", db_path=database.path)

    @app.after_serving
    async def shutdown():
        database.close()
        logger.info("embedding_server_stopped")

    @app.errorhandler(EmbeddingServerError)
    async def service_error(error: EmbeddingServerError):
        status = STATUS_BY_KIND.get(error.kind, 500)
        log = logger.warning if status < 500 else logger.error
        log(
            "request_failed",
            path=request.path,
            kind=error.kind.value,
            error=error.message,
            status=status,
        )
        return jsonify(error.to_dict()), status

    @app.errorhandler(404)
    async def not_found(error):
        """Handle 404 errors."""
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(405)
    async def method_not_allowed(error):
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(500)
    async def internal_error(error):
        """Handle 500 errors."""
        original = getattr(error, "original_exception", None) or error
        logger.error(
            "internal_server_error",
            error=str(original),
            error_type=type(original).__name__,
        )
        return jsonify({"error": "Internal server error", "details": str(original)}), 500

    return app


app = create_app()


def run() -> None:
    """Run the development server."""
    app.run(host=config.HOST, port=config.PORT)


if __name__ == "__main__":
    # For development - serve with hypercorn in production
    run()
