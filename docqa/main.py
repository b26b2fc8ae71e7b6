"""Main Quart application for the document Q&A service."""
from quart import Quart, request, jsonify
from pydantic import BaseModel, Field
import pydantic
import asyncio
import uuid
import structlog

from docqa import config
from docqa.exceptions import (
    DocQAError,
    IngestionError,
    NoChunksError,
    PersistenceError,
    ProviderError,
    ProviderTimeoutError,
    ValidationError,
)
from docqa.log import configure_logging
from docqa.rag.answer import AnswerSynthesizer, GenerationProvider, OpenAIGenerationProvider
from docqa.rag.embeddings import EmbeddingBatcher, get_embedding_batcher
from docqa.rag.ingest import IngestPipeline
from docqa.rag.query import QueryPipeline
from docqa.rag.retriever import Retriever
from docqa.rag.store import DocumentStore


configure_logging()

logger = structlog.get_logger()


class IngestRequest(BaseModel):
    title: str = Field(min_length=1)
    content: str = Field(min_length=1)
    fileType: str | None = None


class QueryRequest(BaseModel):
    question: str = Field(min_length=1)


def _error_status(error: DocQAError) -> int:
    if isinstance(error, (ValidationError, NoChunksError)):
        return 400
    if isinstance(error, ProviderTimeoutError):
        return 504
    if isinstance(error, ProviderError):
        return 502
    return 500


def _error_response(error: DocQAError, event: str):
    status = _error_status(error)
    log = logger.warning if status < 500 else logger.error
    log(event, error=str(error), error_type=type(error).__name__)

    body = {"error": error.message}
    if isinstance(error, IngestionError):
        body["documentId"] = error.document_id
        body["rolledBack"] = error.rolled_back
        body["stats"] = error.stats
    if isinstance(error, ProviderError):
        body["retryable"] = error.retryable
    return jsonify(body), status


def _invalid_body(error: pydantic.ValidationError):
    fields = [".".join(str(p) for p in e["loc"]) for e in error.errors()]
    return jsonify({"error": f"Invalid request body: {', '.join(fields)}"}), 400


def create_app(
    store: DocumentStore = None,
    batcher: EmbeddingBatcher = None,
    generation_provider: GenerationProvider = None,
) -> Quart:
    """Build the Quart app and wire the pipelines.

    Args:
        store: Document store (default: SQLite at config.DB_PATH)
        batcher: Embedding batcher (default: OpenAI-backed)
        generation_provider: Answer generation provider (default: OpenAI chat)
    """
    app = Quart(__name__)

    store = store or DocumentStore(config.DB_PATH)
    batcher = batcher or get_embedding_batcher()
    generation_provider = generation_provider or OpenAIGenerationProvider(
        config.generation_provider_config()
    )

    ingest_pipeline = IngestPipeline(store=store, batcher=batcher)
    query_pipeline = QueryPipeline(
        retriever=Retriever(store=store, batcher=batcher),
        synthesizer=AnswerSynthesizer(generation_provider),
    )

    @app.before_serving
    async def startup():
        await store.init()

    @app.route("/api/documents", methods=["POST"])
    async def upload_document():
        """Ingest a document.

        Expects JSON body:
        {
            "title": "document title",
            "content": "extracted text",
            "fileType": "text/plain"  // optional
        }

        Returns JSON with status "success" or "partial_success", the new
        documentId, chunk counts, batch statistics and elapsed time.
        """
        try:
            body = IngestRequest.model_validate(await request.get_json(silent=True) or {})
        except pydantic.ValidationError as e:
            return _invalid_body(e)

        document_id = str(uuid.uuid4())
        try:
            result = await asyncio.wait_for(
                ingest_pipeline.ingest_document(
                    body.title, body.content, body.fileType, document_id=document_id
                ),
                config.REQUEST_TIMEOUT,
            )
        except asyncio.TimeoutError:
            # The pipeline has finished its rollback by the time wait_for returns
            remaining = await store.get_document_titles([document_id])
            logger.error(
                "ingest_request_timeout",
                document_id=document_id,
                timeout=config.REQUEST_TIMEOUT,
            )
            return jsonify({
                "error": "Upload timed out",
                "documentId": document_id,
                "rolledBack": document_id not in remaining,
            }), 504
        except DocQAError as e:
            return _error_response(e, "ingest_request_failed")

        data = result.to_dict()
        if result.is_partial:
            data["message"] = (
                f'Document "{result.title}" uploaded with {result.chunks_embedded} of '
                f"{result.total_chunks} chunks ({result.batches_failed} batches failed)"
            )
        else:
            data["message"] = (
                f'Document "{result.title}" uploaded with {result.chunks_embedded} chunks'
            )
        return jsonify(data)

    @app.route("/api/documents", methods=["GET"])
    async def list_documents():
        """List all documents, newest first."""
        try:
            documents = await store.list_documents()
        except PersistenceError as e:
            return _error_response(e, "documents_list_error")
        return jsonify({"documents": documents})

    @app.route("/api/documents/<document_id>", methods=["DELETE"])
    async def delete_document(document_id: str):
        """Delete a document and its chunks.

        Returns:
            200 if deleted
            404 Not Found if the document doesn't exist
        """
        try:
            deleted = await store.delete_document(document_id)
        except PersistenceError as e:
            return _error_response(e, "document_delete_error")

        if not deleted:
            return jsonify({"error": "Document not found"}), 404
        return jsonify({"success": True, "message": "Document deleted"})

    @app.route("/api/documents/<document_id>/chunks", methods=["GET"])
    async def document_chunks(document_id: str):
        """List a document's stored chunks in index order."""
        try:
            chunks = await store.get_document_chunks(document_id)
        except PersistenceError as e:
            return _error_response(e, "document_chunks_error")
        return jsonify({"documentId": document_id, "chunks": chunks})

    @app.route("/api/query", methods=["POST"])
    async def query():
        """Answer a question from the stored documents.

        Expects JSON body:
        {
            "question": "user question"
        }

        Returns JSON:
        {
            "answer": "answer text",
            "sources": [{"document_title", "chunk_text", "similarity"}, ...]
        }
        """
        try:
            body = QueryRequest.model_validate(await request.get_json(silent=True) or {})
        except pydantic.ValidationError as e:
            return _invalid_body(e)

        logger.info("query_request_received", question_length=len(body.question))

        try:
            response = await asyncio.wait_for(
                query_pipeline.answer(body.question), config.REQUEST_TIMEOUT
            )
        except asyncio.TimeoutError:
            logger.error("query_request_timeout", timeout=config.REQUEST_TIMEOUT)
            return jsonify({"error": "Query timed out"}), 504
        except DocQAError as e:
            return _error_response(e, "query_request_failed")

        return jsonify(response.to_dict())

    @app.route("/health/ready")
    async def health_ready():
        """Readiness probe - check if app can serve requests.

        Checks:
        - The document store is readable
        - The chat API is reachable and serves the configured model
        """
        checks = {"status": "healthy", "store": False, "models": True}

        try:
            checks["stats"] = await store.get_stats()
            checks["store"] = True
        except PersistenceError as e:
            logger.error("health_check_failed", error=str(e))
            checks["status"] = "unhealthy"
            checks["error"] = e.message

        # Injected providers are trusted; only the HTTP client can be probed
        if isinstance(generation_provider, OpenAIGenerationProvider):
            try:
                models = await generation_provider.client.list_models()
                if generation_provider.model not in models:
                    checks["models"] = False
                    checks["status"] = "unhealthy"
                    checks["error"] = f"Missing chat model: {generation_provider.model}"
            except DocQAError as e:
                logger.error("health_check_failed", error=str(e))
                checks["models"] = False
                checks["status"] = "unhealthy"
                checks["error"] = e.message

        return jsonify(checks), 200 if checks["status"] == "healthy" else 503

    @app.route("/health/live")
    async def health_live():
        """Liveness probe - check if app is running."""
        return jsonify({"status": "alive"}), 200

    @app.errorhandler(404)
    async def not_found(error):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(500)
    async def internal_error(error):
        logger.error("internal_server_error", error=str(error))
        return jsonify({"error": "Internal server error"}), 500

    return app


# Serve with: hypercorn docqa.main:app
app = create_app()


if __name__ == "__main__":
    # For development - use hypercorn in production
    app.run(host="0.0.0.0", port=5000, debug=True)
