from __future__ import annotations

from flask import current_app, jsonify, request
from werkzeug.datastructures import ImmutableMultiDict

from ..services.errors import StoryPipelineError
from ..services.persistence import StoreUnavailableError, get_story, list_stories
from ..services.settings import current_settings
from ..services.story_pipeline import generate_illustrated_story
from ..services.validation import validate_story_request
from . import bp
from .forms import StoryRequestForm

_STORE_ERROR_STATUS = {"NO_DATABASE_URL": 500, "CONNECTION_FAILED": 503}


@bp.route("/generate-story", methods=["GET", "POST"])
def generate_story():
    payload = request.get_json(silent=True) if request.is_json else None
    formdata = ImmutableMultiDict(payload) if isinstance(payload, dict) else request.form
    form = StoryRequestForm(formdata=formdata)

    try:
        settings = current_settings()
        story_request = validate_story_request(request.method, form, settings)
        response_payload = generate_illustrated_story(story_request, settings)
    except StoryPipelineError as exc:
        return jsonify(exc.to_dict()), exc.status_code
    except Exception:  # pragma: no cover
        current_app.logger.exception("Unexpected error while generating a story")
        return (
            jsonify(
                {
                    "success": False,
                    "error": "We couldn't generate a story right now. Please try again.",
                    "code": "GENERATION_FAILED",
                }
            ),
            500,
        )

    return jsonify(response_payload)


@bp.route("/stories", methods=["GET"])
def library():
    settings = current_settings()
    page = request.args.get("page", 1, type=int) or 1
    per_page = request.args.get("per_page", settings.library_page_size, type=int) or settings.library_page_size

    try:
        result = list_stories(page, per_page, settings)
    except StoreUnavailableError as exc:
        return jsonify({"success": False, "error": str(exc), "code": exc.code}), _STORE_ERROR_STATUS.get(exc.code, 500)

    return jsonify(
        {
            "success": True,
            "stories": [story.to_dict() for story in result.items],
            "page": result.page,
            "perPage": result.per_page,
            "total": result.total,
            "pages": result.pages,
        }
    )


@bp.route("/stories/<int:story_id>", methods=["GET"])
def story_detail(story_id: int):
    settings = current_settings()
    try:
        story = get_story(story_id, settings)
    except StoreUnavailableError as exc:
        return jsonify({"success": False, "error": str(exc), "code": exc.code}), _STORE_ERROR_STATUS.get(exc.code, 500)

    if story is None:
        return jsonify({"success": False, "error": "We couldn't find that story.", "code": "STORY_NOT_FOUND"}), 404
    return jsonify({"success": True, "story": story.to_dict()})


@bp.route("/health", methods=["GET"])
def health():
    config = current_app.config
    return jsonify(
        {
            "status": "ok",
            "providerConfigured": bool(config.get("OPENAI_API_KEY")),
            "databaseConfigured": bool(config.get("DATABASE_URL")),
            "blobStorageConfigured": bool(config.get("BLOB_BUCKET")),
            "illustrationStorage": config.get("ILLUSTRATION_STORAGE"),
        }
    )
