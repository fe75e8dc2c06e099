import logging
import os
from typing import Any, Optional

from flask import Flask, Response, jsonify, request, stream_with_context, url_for
from pymongo.errors import PyMongoError

from backend.blobs import GridFSBlobStore, decode_base64_payload
from backend.store import TutorStore
from phystutor import rich_text
from phystutor.background import BackgroundRunner
from phystutor.conversation import ChatTurn, TutorConversation
from phystutor.diagrams import DiagramSynthesizer
from phystutor.errors import NotFoundError, TutorError, ValidationError
from phystutor.images import ImageLoader
from phystutor.normalizer import normalize
from phystutor.openai_client import OpenAIClient
from phystutor.solver import ProblemSolver

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def _json_body() -> dict:
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def _int_arg(name: str, default: int) -> int:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"Invalid {name}")


def create_server(
    db: Any = None,
    client: Optional[OpenAIClient] = None,
    background: Optional[BackgroundRunner] = None,
    blobs: Any = None,
) -> Flask:
    if db is None:
        from backend.mongo import connect

        db = connect()

    server = Flask(__name__)
    store = TutorStore(db)
    blobs = blobs or GridFSBlobStore(db)
    client = client or OpenAIClient()
    background = background or BackgroundRunner()
    images = ImageLoader(blobs=blobs)

    solver = ProblemSolver(store, client, images, background)
    diagrams = DiagramSynthesizer(store, client)
    tutor = TutorConversation(store, client, images)

    server.extensions["phystutor"] = {
        "store": store,
        "solver": solver,
        "diagrams": diagrams,
        "tutor": tutor,
        "background": background,
    }

    @server.errorhandler(TutorError)
    def handle_tutor_error(exc: TutorError):
        if exc.status_code >= 500:
            logger.error("%s: %s", type(exc).__name__, exc.message)
        return jsonify({"error": exc.message}), exc.status_code

    @server.errorhandler(PyMongoError)
    def handle_db_error(exc: PyMongoError):
        logger.exception("Database error: %s", exc)
        return jsonify({"error": "Database error"}), 500

    @server.route("/api/hello")
    def hello():
        return jsonify({"message": "API Working!"})

    @server.route("/api/upload", methods=["POST"])
    def upload():
        if request.mimetype == "multipart/form-data":
            file_storage = request.files.get("file") or request.files.get("image")
            if file_storage is None:
                raise ValidationError("No file provided in form data. Use 'file' or 'image' field.")
            data = file_storage.read()
            mime_type = file_storage.mimetype or None
        elif request.is_json:
            body = _json_body()
            encoded = body.get("base64") or body.get("image")
            if not encoded or not isinstance(encoded, str):
                raise ValidationError("No base64 or image data provided")
            data, mime_type = decode_base64_payload(encoded)
        else:
            raise ValidationError("Content-Type must be multipart/form-data or application/json")

        stored = blobs.put(data, mime_type)
        logger.info("Stored upload %s (%d bytes, %s)", stored.id, stored.size, stored.mime_type)
        return jsonify({
            "url": url_for("get_file", file_id=stored.id, _external=True),
            "mimeType": stored.mime_type,
        })

    @server.route("/api/files/<file_id>", methods=["GET"])
    def get_file(file_id):
        data, mime_type = blobs.get(file_id)
        return Response(data, mimetype=mime_type)

    @server.route("/api/problems/analyze", methods=["POST"])
    def analyze_problem():
        body = _json_body()
        problem_id = solver.analyze(body.get("problemText"), body.get("imageUrl"))
        return jsonify({"success": True, "problemId": problem_id})

    @server.route("/api/problems/get", methods=["GET"])
    def get_problem():
        problem_id = request.args.get("id")
        if not problem_id:
            raise ValidationError("Problem ID is required")
        problem = store.get_problem(problem_id)
        if problem is None:
            raise NotFoundError("Problem not found")
        solution = store.get_solution(problem.id)
        return jsonify({
            "problem": problem.to_dict(),
            "solution": solution.to_dict() if solution else None,
            "visuals": [v.to_dict() for v in store.list_visuals(problem.id)],
        })

    @server.route("/api/problems/list", methods=["GET"])
    def list_problems():
        limit = _int_arg("limit", DEFAULT_PAGE_SIZE)
        offset = _int_arg("offset", 0)
        if limit < 1 or limit > MAX_PAGE_SIZE or offset < 0:
            raise ValidationError(f"limit must be 1-{MAX_PAGE_SIZE} and offset must not be negative")
        summaries, total = store.list_problems(limit=limit, offset=offset)
        return jsonify({
            "problems": [s.to_dict() for s in summaries],
            "total": total,
            "limit": limit,
            "offset": offset,
        })

    @server.route("/api/problems/generate-visuals", methods=["POST"])
    def generate_visuals():
        problem_id = _json_body().get("problemId")
        if not problem_id:
            raise ValidationError("Problem ID is required")
        visuals = solver.suggest_visuals(problem_id)
        return jsonify({"visuals": [v.to_dict() for v in visuals]})

    @server.route("/api/problems/generate-diagrams", methods=["POST"])
    def generate_diagram():
        body = _json_body()
        problem_id = body.get("problemId")
        if not problem_id:
            raise ValidationError("Problem ID is required")
        visual = diagrams.render(problem_id, body.get("visualType") or None)
        return jsonify({"visual": visual.to_dict()})

    @server.route("/api/tutor/chat", methods=["POST"])
    def tutor_chat():
        turn = ChatTurn.from_dict(_json_body())
        if not turn.stream:
            return jsonify(tutor.reply(turn).to_dict())

        chat = tutor.stream_reply(turn)
        headers = {"Cache-Control": "no-cache", "Connection": "keep-alive"}
        if chat.conversation_id:
            headers["X-Conversation-Id"] = chat.conversation_id
        return Response(
            stream_with_context(chat.frames),
            mimetype="text/event-stream",
            headers=headers,
        )

    @server.route("/api/tutor/get-conversation", methods=["GET"])
    def get_conversation():
        conversation = tutor.get_or_create_conversation(request.args.get("problemId"))
        return jsonify(conversation.to_dict())

    @server.route("/api/render", methods=["POST"])
    def render_text():
        text = _json_body().get("text")
        if not isinstance(text, str):
            raise ValidationError("text is required")
        return jsonify({
            "text": normalize(text),
            "blocks": [b.to_dict() for b in rich_text.render(text)],
        })

    @server.route("/api/<path:path>")
    def api_not_found(path):
        return jsonify({"error": "API route not found"}), 404

    return server


if __name__ == '__main__':
    import set_env_vars

    set_env_vars.load()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")
    set_env_vars.check_required()
    create_server().run(port=int(os.environ.get("PORT") or 8080))
