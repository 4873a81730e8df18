"""
Flask Web API for the code stream video generator
"""

import io
import os
import threading
import traceback
import uuid

from flask import Flask, request, jsonify, send_file
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

from config import RenderConfig
from errors import CollaboratorError, RunCancelled
from narration import NarrationSynthesizer
from storage import KINDS, VideoStore
from studio import ProduceRequest, produce

app = Flask(__name__)
app.secret_key = os.environ.get('FLASK_SECRET_KEY', 'codestream-secret-key')

config = RenderConfig.from_env()
config.ensure_dirs()
store = VideoStore(config.db_path)

# Store job status
jobs = {}

REQUEST_FIELDS = {
    'text', 'file_name', 'language', 'theme', 'narrate', 'script', 'voice',
    'target_seconds', 'captions', 'video_fit', 'avatar_source', 'generate_avatar',
    'avatar_position', 'avatar_size', 'avatar_circular', 'thumbnail_title', 'display_name',
}


class RenderJob:
    def __init__(self, job_id):
        self.job_id = job_id
        self.status = "pending"
        self.progress = 0
        self.message = "Waiting to start..."
        self.record_id = None
        self.kind = None
        self.error = None
        self.cancel_event = threading.Event()

    def to_dict(self):
        return {
            'status': self.status,
            'progress': self.progress,
            'message': self.message,
            'record_id': self.record_id,
            'kind': self.kind,
            'error': self.error,
        }


def render_async(job_id, produce_request):
    """Render video in background thread"""
    job = jobs[job_id]

    def on_progress(percent, message):
        job.progress = percent
        job.message = message

    try:
        job.status = "processing"
        record_id, artifact, plan = produce(
            config, produce_request, store=store,
            progress_callback=on_progress,
            cancel_event=job.cancel_event,
        )
        job.record_id = record_id
        job.kind = plan.kind.value
        job.status = "completed"
        job.progress = 100
        job.message = "Video ready for download!"
    except RunCancelled:
        job.status = "cancelled"
        job.message = "Cancelled"
    except Exception as e:
        traceback.print_exc()
        job.status = "error"
        job.error = str(e)
        job.message = f"Error: {str(e)}"


def parse_request(data):
    values = {key: data[key] for key in REQUEST_FIELDS if key in data}
    for flag in ('narrate', 'generate_avatar', 'avatar_circular'):
        if flag in values and isinstance(values[flag], str):
            values[flag] = values[flag].lower() in ('1', 'true', 'yes', 'on')
    for number in ('target_seconds', 'avatar_size'):
        if number in values and values[number] not in (None, ''):
            values[number] = float(values[number])
    if values.get('captions') == 'none':
        values['captions'] = None
    return ProduceRequest(**values)


@app.route('/generate', methods=['POST'])
def generate():
    """Start video generation"""
    data = request.get_json(silent=True) or request.form.to_dict()
    upload = request.files.get('file')
    if upload is not None:
        data['text'] = upload.read().decode('utf-8', errors='replace')
        data.setdefault('file_name', upload.filename)

    if not data.get('text', '').strip():
        return jsonify({'error': 'Source text is required'}), 400
    try:
        produce_request = parse_request(data)
    except (TypeError, ValueError) as e:
        return jsonify({'error': f'Invalid request: {e}'}), 400

    # Create job
    job_id = str(uuid.uuid4())[:8]
    jobs[job_id] = RenderJob(job_id)

    # Start background thread
    thread = threading.Thread(
        target=render_async,
        args=(job_id, produce_request)
    )
    thread.daemon = True
    thread.start()

    return jsonify({'job_id': job_id})


@app.route('/status/<job_id>')
def status(job_id):
    """Check job status"""
    if job_id not in jobs:
        return jsonify({'error': 'Job not found'}), 404
    return jsonify(jobs[job_id].to_dict())


@app.route('/cancel/<job_id>', methods=['POST'])
def cancel(job_id):
    """Ask a running job to stop at its next frame"""
    if job_id not in jobs:
        return jsonify({'error': 'Job not found'}), 404
    job = jobs[job_id]
    if job.status not in ('pending', 'processing'):
        return jsonify({'error': f'Job already {job.status}'}), 400
    job.cancel_event.set()
    return jsonify({'success': True})


@app.route('/download/<job_id>')
def download(job_id):
    """Download generated video"""
    if job_id not in jobs:
        return jsonify({'error': 'Job not found'}), 404

    job = jobs[job_id]
    if job.status != 'completed' or job.record_id is None:
        return jsonify({'error': 'Video not ready'}), 400
    return _send_record(job.record_id)


@app.route('/videos')
def list_videos():
    """List stored records of one kind, newest first"""
    kind = request.args.get('kind', 'video')
    if kind not in KINDS:
        return jsonify({'error': f'Unknown kind {kind}'}), 400
    return jsonify([record.to_dict() for record in store.list_by_kind(kind)])


@app.route('/videos/<int:record_id>', methods=['GET'])
def get_video(record_id):
    return _send_record(record_id)


@app.route('/videos/<int:record_id>', methods=['DELETE'])
def delete_video(record_id):
    if not store.delete(record_id):
        return jsonify({'error': 'Record not found'}), 404
    return jsonify({'success': True})


@app.route('/stats')
def stats():
    return jsonify(store.stats())


@app.route('/voices')
def voices():
    """Narration voices of the configured provider"""
    synthesizer = NarrationSynthesizer(config.elevenlabs_api_key, config.default_voice)
    try:
        available = synthesizer.list_voices()
    except CollaboratorError as e:
        return jsonify({'error': str(e)}), 502
    return jsonify({
        'provider': synthesizer.provider,
        'voices': [{'id': voice_id, 'name': name} for voice_id, name in available],
    })


def _send_record(record_id):
    record = store.get(record_id)
    if record is None:
        return jsonify({'error': 'Record not found'}), 404
    return send_file(
        io.BytesIO(record.data),
        mimetype=record.mime_type,
        as_attachment=True,
        download_name=record.filename
    )


if __name__ == '__main__':
    print("=" * 60)
    print("  CODESTREAM VIDEO GENERATOR - WEB API")
    print("=" * 60)
    port = int(os.environ.get('PORT', 5000))
    print(f"\n  Listening on http://localhost:{port}\n")
    app.run(host='0.0.0.0', port=port, debug=False)
