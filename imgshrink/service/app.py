"""
HTTP API around the compression controller and the Pillow transforms.

Run with `imgshrink-server` (or `python -m imgshrink.service.app`); the
listening port comes from the PORT environment variable.
"""
import base64
import json
import logging
import os
import time
from datetime import datetime, timezone

from flask import Blueprint, Flask, current_app, jsonify, request, send_file
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

from imgshrink.compression.batch import DEFAULT_WORKERS, compress_all
from imgshrink.compression.codec import PillowCodec
from imgshrink.compression.controller import SizeTargetingController
from imgshrink.compression.errors import DecodeError, InvalidTarget
from imgshrink.compression.types import MB, CompressionRequest, ImageFormat, ImageUpload
from imgshrink.service import transforms
from imgshrink.utils.common import format_file_size, setup_logging, write_archive

DEFAULT_CONFIG = {
    "MAX_FILE_SIZE": 50 * MB,
    "MAX_FILES": 10,
    "MAX_BATCH_FILES": 20,
    "MAX_CONTENT_LENGTH": 20 * 50 * MB,
    "WORKERS": DEFAULT_WORKERS,
}

CONVERT_FORMATS = ("jpeg", "png", "webp", "tiff")

_started = time.monotonic()

api = Blueprint("api", __name__, url_prefix="/api")


class ApiError(Exception):
    """Client error reported as a JSON body"""

    def __init__(self, message, status=400):
        super().__init__(message)
        self.message = message
        self.status = status


def _controller():
    return current_app.extensions["imgshrink.controller"]


def _codec():
    return _controller().codec


def _read_uploads(field, limit):
    files = [f for f in request.files.getlist(field) if f and f.filename]
    if not files:
        raise ApiError("No files uploaded")
    if len(files) > limit:
        raise ApiError(f"Too many files. Maximum is {limit} files at once.")

    max_size = current_app.config["MAX_FILE_SIZE"]
    uploads = []
    for file in files:
        if not (file.mimetype or "").startswith("image/"):
            raise ApiError("Only image files are allowed!")
        data = file.read()
        if len(data) > max_size:
            raise RequestEntityTooLarge()
        uploads.append(ImageUpload(name=file.filename, data=data, media_type=file.mimetype))
    return uploads


def _read_single(field="image"):
    if field not in request.files or not request.files[field].filename:
        raise ApiError("No file uploaded")
    return _read_uploads(field, 1)[0]


def _int_field(name, default=None):
    value = request.form.get(name)
    if value in (None, ""):
        return default
    try:
        return int(value)
    except ValueError:
        raise ApiError(f"{name} must be an integer")


def _decode(upload):
    try:
        return _codec().decode(upload.data, name=upload.name)
    except DecodeError as e:
        raise ApiError(f"Could not process the image: {e.reason}")


def _compression_request():
    max_file_size_kb = request.form.get("maxFileSizeKB")
    try:
        return CompressionRequest.from_options(
            method=request.form.get("method", "quality"),
            quality=_int_field("quality", 80),
            max_file_size_kb=float(max_file_size_kb) if max_file_size_kb else None,
            output_format=request.form.get("format", "original"),
            max_width=_int_field("maxWidth"),
            max_height=_int_field("maxHeight"),
        )
    except InvalidTarget:
        raise ApiError("Please enter a valid target file size!")
    except ValueError as e:
        raise ApiError(f"Invalid compression options: {e}")


def _run_compression():
    uploads = _read_uploads("images", current_app.config["MAX_FILES"])
    compression_request = _compression_request()
    return compress_all(uploads, compression_request, controller=_controller(),
                        max_workers=current_app.config["WORKERS"])


def _encoded(data):
    return base64.b64encode(data).decode("ascii")


@api.route("/health", methods=["GET"])
def health():
    return jsonify(
        status="healthy",
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime=time.monotonic() - _started,
    )


@api.route("/compress", methods=["POST"])
def compress():
    items = _run_compression()
    results = []
    for item in items:
        if item.ok:
            results.append(item.result.to_dict(include_data=True))
        else:
            logging.error(f"Error compressing {item.name}: {item.error}")
            results.append({"originalName": item.name, "error": "Failed to compress image", "reason": item.error})

    return jsonify(
        success=True,
        results=results,
        totalFiles=len(items),
        processedFiles=sum(1 for item in items if item.ok),
    )


@api.route("/compress/archive", methods=["POST"])
def compress_archive():
    items = _run_compression()
    results = [item.result for item in items if item.ok]
    if not results:
        raise ApiError("All images failed to compress", status=422)
    return send_file(
        write_archive(results),
        mimetype="application/zip",
        as_attachment=True,
        download_name="compressed_images.zip",
    )


@api.route("/resize", methods=["POST"])
def resize():
    upload = _read_single()
    width = _int_field("width")
    height = _int_field("height")
    if not width and not height:
        raise ApiError("Width or height must be specified")
    maintain_aspect_ratio = request.form.get("maintainAspectRatio", "true") != "false"

    decoded = _decode(upload)
    resized = transforms.resize_image(decoded.pixels, width, height, maintain_aspect_ratio)
    data = _codec().encode(resized, ImageFormat.JPEG, 0.9)
    return jsonify(
        success=True,
        originalSize=upload.size_bytes,
        newSize=len(data),
        width=resized.width,
        height=resized.height,
        data=_encoded(data),
    )


@api.route("/convert", methods=["POST"])
def convert():
    upload = _read_single()
    target = (request.form.get("format") or "").lower()
    if target not in CONVERT_FORMATS:
        raise ApiError(f"Unsupported format. Supported formats: {', '.join(CONVERT_FORMATS)}")
    quality = _int_field("quality", 90)

    decoded = _decode(upload)
    data = _codec().encode(decoded.pixels, ImageFormat(target.upper()), quality / 100)
    return jsonify(
        success=True,
        originalFormat=upload.media_type,
        newFormat=f"image/{target}",
        originalSize=upload.size_bytes,
        newSize=len(data),
        data=_encoded(data),
    )


@api.route("/batch-process", methods=["POST"])
def batch_process():
    uploads = _read_uploads("images", current_app.config["MAX_BATCH_FILES"])
    try:
        operations = json.loads(request.form.get("operations") or "[]")
    except json.JSONDecodeError:
        raise ApiError("operations must be a JSON list")
    if not isinstance(operations, list) or not all(isinstance(op, dict) for op in operations):
        raise ApiError("operations must be a JSON list")

    results = []
    for index, upload in enumerate(uploads):
        # Each file uses its own operation, falling back to the first one
        if index < len(operations):
            operation = operations[index]
        else:
            operation = operations[0] if operations else {}
        try:
            target = str(operation.get("format", "jpeg")).lower()
            if target not in ("jpeg", "png", "webp"):
                raise ValueError(f"Unsupported format {target}")
            decoded = _codec().decode(upload.data, name=upload.name)
            processed = transforms.apply_operations(decoded.pixels, operation)
            data = _codec().encode(processed, ImageFormat(target.upper()), operation.get("quality", 80) / 100)
        except (DecodeError, ValueError, TypeError, AttributeError, OSError) as e:
            logging.error(f"Error processing {upload.name}: {e}")
            results.append({"originalName": upload.name, "error": str(e)})
            continue

        results.append({
            "originalName": upload.name,
            "originalSize": upload.size_bytes,
            "processedSize": len(data),
            "savings": f"{(upload.size_bytes - len(data)) / upload.size_bytes * 100:.1f}",
            "data": _encoded(data),
            "operations": operation,
            "info": {"format": target, "width": processed.width, "height": processed.height, "size": len(data)},
        })

    return jsonify(
        success=True,
        results=results,
        totalFiles=len(uploads),
        processedFiles=sum(1 for r in results if "error" not in r),
    )


@api.route("/metadata", methods=["POST"])
def metadata():
    upload = _read_single()
    try:
        info = transforms.extract_metadata(upload.data, name=upload.name)
    except DecodeError as e:
        raise ApiError(f"Could not read metadata: {e.reason}")
    return jsonify(success=True, filename=upload.name, size=upload.size_bytes, **info)


def _register_error_handlers(app):
    @app.errorhandler(ApiError)
    def handle_api_error(error):
        return jsonify(error=error.message), error.status

    @app.errorhandler(RequestEntityTooLarge)
    def handle_too_large(error):
        limit = format_file_size(app.config["MAX_FILE_SIZE"])
        return jsonify(error=f"File too large. Maximum size is {limit}."), 413

    @app.errorhandler(404)
    def handle_not_found(error):
        return jsonify(error="Endpoint not found"), 404

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify(error=error.description), error.code

    @app.errorhandler(Exception)
    def handle_unexpected(error):
        logging.exception(f"Unhandled error: {error}")
        return jsonify(error="Something went wrong!"), 500


def create_app(config=None, codec=None):
    """
    Build the Flask application

    Args:
        config: Mapping applied over the defaults and IMGSHRINK_* environment variables
        codec: ImageCodec for the controller (Pillow by default)

    Returns:
        Flask: The configured app
    """
    app = Flask(__name__)
    app.config.update(DEFAULT_CONFIG)
    app.config.from_prefixed_env("IMGSHRINK")
    if config:
        app.config.update(config)

    app.extensions["imgshrink.controller"] = SizeTargetingController(codec or PillowCodec())
    app.register_blueprint(api)
    _register_error_handlers(app)
    return app


def main():
    setup_logging()
    app = create_app()
    port = int(os.environ.get("PORT", 3000))
    logging.info(f"Image compressor server running on http://localhost:{port}")
    logging.info(f"Upload limits: {app.config['MAX_FILES']} files, "
                 f"{format_file_size(app.config['MAX_FILE_SIZE'])} each")
    app.run(host=os.environ.get("HOST", "127.0.0.1"), port=port)


if __name__ == "__main__":
    main()
