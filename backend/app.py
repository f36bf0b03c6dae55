import logging
import os
import time
from datetime import datetime, timedelta
from uuid import uuid4

import orjson
from dotenv import load_dotenv
from flask import Flask, Response, jsonify, request, stream_with_context
from flask_cors import CORS

from config import AnalysisConfig
from filters import available_years
from parser import ParseError, parse_events_json
from runner import AnalysisSuperseded, LatestRequest, run_analysis

load_dotenv()

logging.basicConfig(
    level=os.getenv('LOG_LEVEL', 'INFO').upper(),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)
logger = logging.getLogger(__name__)

app = Flask(__name__)
app.config['MAX_CONTENT_LENGTH'] = int(os.getenv('MAX_UPLOAD_MB', '500')) * 1024 * 1024

CORS(app, origins=os.getenv('ALLOWED_ORIGINS', '*').split(','))

# upload id -> {"events", "requests", "progress", "created_at"}
sessions = {}

SESSION_MAX_AGE = timedelta(hours=1)

BASE_CONFIG = AnalysisConfig.from_env()


def cleanup_old_sessions():
    """Forget uploads older than SESSION_MAX_AGE."""
    cutoff = datetime.now() - SESSION_MAX_AGE
    expired = [sid for sid, data in sessions.items() if data["created_at"] < cutoff]
    for sid in expired:
        sessions.pop(sid, None)
    if expired:
        logger.info("Expired %d upload sessions", len(expired))


def _new_session(events):
    session_id = str(uuid4())
    sessions[session_id] = {
        "events": events,
        "requests": LatestRequest(),
        "progress": {"stage": "parsed", "percent": 0},
        "created_at": datetime.now(),
    }
    return session_id


def _read_upload():
    """Return (payload, error message) from a multipart file field or the raw body."""
    if 'file' not in request.files:
        return request.get_data(), None

    upload_file = request.files['file']
    if not upload_file.filename:
        return None, "No file selected"
    if not upload_file.filename.lower().endswith('.json'):
        return None, "Invalid file type. Please upload a .json file"
    return upload_file.read(), None


@app.route('/health', methods=['GET'])
def health():
    return jsonify({"status": "ok"})


@app.route('/upload', methods=['POST'])
def upload():
    """Accept canonical play events and open an analysis session for them."""
    cleanup_old_sessions()

    payload, error = _read_upload()
    if error:
        return jsonify({"error": error}), 400
    if not payload:
        return jsonify({"error": "No file provided"}), 400

    try:
        parsed = parse_events_json(payload)
    except ParseError as e:
        return jsonify({"error": f"Failed to parse file: {e}"}), 400

    if not parsed.events:
        return jsonify({"error": "No listening history found in file"}), 400

    session_id = _new_session(parsed.events)
    logger.info("Session %s: %d events accepted, %d dropped",
                session_id, parsed.report.accepted, parsed.report.dropped)
    return jsonify({
        "session_id": session_id,
        "accepted": parsed.report.accepted,
        "dropped": parsed.report.dropped,
        "years": available_years(parsed.events, BASE_CONFIG.tz),
    })


# Progress stream settings, in seconds
PROGRESS_POLL_INTERVAL = 0.25
PROGRESS_KEEPALIVE_INTERVAL = 15
PROGRESS_STREAM_LIMIT = 300

FINAL_STAGES = ("complete", "error")


def _sse_frame(payload, event=None):
    frame = f"data: {orjson.dumps(payload).decode()}\n\n"
    if event:
        frame = f"event: {event}\n{frame}"
    return frame


@app.route('/progress/<session_id>', methods=['GET'])
def progress(session_id):
    """
    Server-sent events for the latest analysis request of a session.

    A frame is sent only when the progress changes. Each frame carries the
    request generation, so a client can tell when a newer request took over.
    """
    if session_id not in sessions:
        return jsonify({"error": "Session not found"}), 404

    def stream():
        opened = time.monotonic()
        quiet_since = opened
        last_sent = None

        while time.monotonic() - opened <= PROGRESS_STREAM_LIMIT:
            session = sessions.get(session_id)
            if session is None:
                yield _sse_frame({"stage": "error", "message": "Session expired"}, event="error")
                return

            current = dict(session["progress"], generation=session["requests"].generation)
            if current != last_sent:
                yield _sse_frame(current)
                last_sent = current
                quiet_since = time.monotonic()
                if current.get("stage") in FINAL_STAGES:
                    return
            elif time.monotonic() - quiet_since >= PROGRESS_KEEPALIVE_INTERVAL:
                yield ": keepalive\n\n"
                quiet_since = time.monotonic()

            time.sleep(PROGRESS_POLL_INTERVAL)

        yield _sse_frame({"stage": "error", "message": "Timeout"}, event="error")

    return Response(
        stream_with_context(stream()),
        mimetype='text/event-stream',
        headers={
            'Cache-Control': 'no-cache',
            'X-Accel-Buffering': 'no',
        }
    )


@app.route('/analyze/<session_id>', methods=['POST'])
def analyze(session_id):
    """
    Run the aggregations for a session with the posted filter settings.

    A newer request for the same session supersedes one still in flight; the
    older request answers 409 and its partial work is thrown away.
    """
    if session_id not in sessions:
        return jsonify({"error": "Session not found"}), 404

    session = sessions[session_id]
    body = request.get_json(silent=True) or {}
    if not isinstance(body, dict):
        return jsonify({"error": "Expected a JSON object"}), 400

    raw_config = body.get("config")
    config = BASE_CONFIG.merged_with(raw_config if isinstance(raw_config, dict) else None)
    token = session["requests"].begin()

    def update_progress(percent):
        if not token.is_stale():
            session["progress"] = {"stage": "analyzing", "percent": percent}

    try:
        result = run_analysis(
            session["events"],
            config,
            date_filter=body.get("date"),
            token=token,
            on_progress=update_progress,
        )
    except AnalysisSuperseded:
        return jsonify({"error": "Superseded by a newer request"}), 409
    except Exception as e:
        logger.exception("Analysis failed for session %s", session_id)
        if not token.is_stale():
            session["progress"] = {"stage": "error", "message": str(e), "percent": 0}
        return jsonify({"error": f"Analysis failed: {e}"}), 500

    if not token.is_stale():
        session["progress"] = {"stage": "complete", "percent": 100}
    return Response(result.to_json(), mimetype='application/json')


@app.route('/sessions/<session_id>', methods=['DELETE'])
def drop_session(session_id):
    if sessions.pop(session_id, None) is None:
        return jsonify({"error": "Session not found"}), 404
    return jsonify({"status": "ok"})


if __name__ == '__main__':
    app.run(debug=os.getenv('FLASK_ENV') == 'development', port=5000)
