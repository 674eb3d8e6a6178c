"""
REST API for CloudHub

Flask application exposing the aggregated storage operations.
"""

import os
import shutil
import asyncio
import logging
import tempfile
import unicodedata
from collections import deque
from datetime import timedelta
from urllib.parse import quote

from flask import Flask, Response, jsonify, request
from flask_login import login_required, login_user, logout_user, current_user
from werkzeug.exceptions import HTTPException

from cloudhub import __version__
from cloudhub.auth import login_manager, User
from cloudhub.errors import CloudHubError, ValidationError

logger = logging.getLogger(__name__)

# In-memory log buffer
log_buffer = deque(maxlen=200)  # Keep last 200 log lines

DOWNLOAD_CHUNK_SIZE = 256 * 1024


class LogBufferHandler(logging.Handler):
    """Log handler that keeps recent lines in memory."""

    def emit(self, record):
        try:
            log_buffer.append(self.format(record))
        except Exception:
            self.handleError(record)


app = Flask(__name__)
app.config['PERMANENT_SESSION_LIFETIME'] = timedelta(days=7)
app.config['SESSION_COOKIE_NAME'] = 'cloudhub_session'
app.config['SESSION_COOKIE_HTTPONLY'] = True
app.config['SESSION_COOKIE_SAMESITE'] = 'Lax'
login_manager.init_app(app)


def _run(coro):
    """Run an aggregator coroutine from a synchronous request handler."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else request.form.to_dict()


def _text_field(data, name):
    value = data.get(name, '')
    if not isinstance(value, str):
        raise ValidationError(f"{name} must be a string")
    return value


def _normalize_provider(value):
    return value.strip().lower() if isinstance(value, str) else value


def _stream_file(path, temp_dir):
    try:
        with open(path, 'rb') as f:
            while True:
                chunk = f.read(DOWNLOAD_CHUNK_SIZE)
                if not chunk:
                    break
                yield chunk
    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)


def _set_attachment(response, name):
    """Content-Disposition with an ASCII fallback plus RFC 5987 filename*."""
    try:
        name.encode('ascii')
        response.headers.set('Content-Disposition', 'attachment', filename=name)
    except UnicodeEncodeError:
        simple = unicodedata.normalize('NFKD', name).encode('ascii', 'ignore').decode('ascii')
        response.headers.set(
            'Content-Disposition', 'attachment',
            filename=simple or 'download',
            **{'filename*': f"UTF-8''{quote(name, safe='')}"}
        )


@app.before_request
def make_session_permanent():
    """Make every session permanent so the cookie survives browser close/reopen."""
    from flask import session as flask_session
    flask_session.permanent = True


@app.after_request
def add_no_cache(response):
    """Prevent browsers from caching API responses."""
    if request.path.startswith('/api/'):
        response.headers['Cache-Control'] = 'no-store, no-cache, must-revalidate'
        response.headers['Pragma'] = 'no-cache'
        response.headers['Expires'] = '0'
    return response


@app.errorhandler(CloudHubError)
def handle_cloudhub_error(e):
    if e.status_code >= 500:
        logger.error(f"{request.method} {request.path} failed: {e.message}")
    return jsonify(e.to_dict()), e.status_code


@app.errorhandler(HTTPException)
def handle_http_error(e):
    if e.code == 413:
        return jsonify({'error': 'File too large'}), 413
    return jsonify({'error': e.description}), e.code


@app.errorhandler(Exception)
def handle_unexpected_error(e):
    logger.exception(f"Unhandled error on {request.method} {request.path}: {e}")
    return jsonify({'error': 'Internal server error'}), 500


def create_app(config, account_store, aggregator):
    """
    Configure the Flask app.

    Args:
        config: Configuration dictionary
        account_store: AccountStore instance
        aggregator: StorageAggregator instance

    Returns:
        Flask app
    """
    app.secret_key = config['secret_key']
    app.config['MAX_CONTENT_LENGTH'] = config.get('max_upload_mb', 512) * 1024 * 1024
    app.account_store = account_store
    app.aggregator = aggregator
    return app


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

@app.route('/api/health')
def api_health():
    return jsonify({'status': 'ok', 'version': __version__})


@app.route('/api/auth/register', methods=['POST'])
def api_register():
    """Create a local user and log them in."""
    data = _json_body()
    try:
        row = app.account_store.create_user(
            email=_text_field(data, 'email'),
            password=_text_field(data, 'password'),
            name=_text_field(data, 'name'),
        )
    except ValueError as e:
        raise ValidationError(str(e))

    user = User(row)
    login_user(user, remember=True)
    app.account_store.update_last_login(user.id)
    return jsonify({'user': user.to_dict()}), 201


@app.route('/api/auth/login', methods=['POST'])
def api_login():
    data = _json_body()
    row = app.account_store.verify_password(_text_field(data, 'email'), _text_field(data, 'password'))
    if not row:
        return jsonify({'error': 'Invalid email or password'}), 401

    user = User(row)
    login_user(user, remember=True)
    app.account_store.update_last_login(user.id)
    logger.info(f"User {user.email} logged in")
    return jsonify({'user': user.to_dict()})


@app.route('/api/auth/logout', methods=['POST'])
@login_required
def api_logout():
    logout_user()
    return jsonify({'message': 'Logged out'})


@app.route('/api/auth/me')
@login_required
def api_me():
    return jsonify({
        'user': current_user.to_dict(),
        'accounts': app.aggregator.linked_accounts(current_user.id),
    })


# ---------------------------------------------------------------------------
# Linked accounts
# ---------------------------------------------------------------------------

@app.route('/api/accounts', methods=['GET'])
@login_required
def api_list_accounts():
    return jsonify({'accounts': app.aggregator.linked_accounts(current_user.id)})


@app.route('/api/accounts', methods=['POST'])
@login_required
def api_connect_account():
    """Link a provider account using tokens obtained by the client."""
    data = _json_body()
    account = _run(app.aggregator.connect_account(
        current_user.id,
        provider=_normalize_provider(data.get('provider')),
        access_token=data.get('access_token'),
        refresh_token=data.get('refresh_token'),
        token_expiry=data.get('token_expiry'),
    ))
    return jsonify({'message': f"{account['provider']} connected successfully", 'account': account}), 201


@app.route('/api/accounts/<provider>', methods=['DELETE'])
@login_required
def api_disconnect_account(provider):
    app.aggregator.disconnect_account(current_user.id, provider)
    return jsonify({'message': f'{provider} disconnected'})


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

@app.route('/api/storage/files', methods=['GET'])
@login_required
def api_list_files():
    """List files across all connected cloud services."""
    return jsonify(_run(app.aggregator.list_files(current_user.id)))


@app.route('/api/storage/files/search', methods=['GET'])
@login_required
def api_search_files():
    """Search files across all connected cloud services."""
    query = request.args.get('query') or request.args.get('q')
    return jsonify(_run(app.aggregator.search_files(current_user.id, query)))


@app.route('/api/storage/files/upload', methods=['POST'])
@login_required
def api_upload_file():
    """Upload a file to the service with the most available space."""
    if 'file' not in request.files:
        raise ValidationError('No file uploaded')

    file = request.files['file']
    if file.filename == '':
        raise ValidationError('No file selected')

    with tempfile.TemporaryDirectory() as temp_dir:
        file_path = os.path.join(temp_dir, 'upload')
        file.save(file_path)
        size = os.path.getsize(file_path)
        result = _run(app.aggregator.upload_file(
            current_user.id, file_path, file.filename,
            mime_type=file.mimetype or None, size=size
        ))

    logger.info(f"Uploaded {file.filename} ({size} bytes) to {result['provider']}")
    return jsonify({'message': 'File uploaded successfully', **result}), 201


@app.route('/api/storage/files/<path:file_id>/download', methods=['GET'])
@login_required
def api_download_file(file_id):
    """Stream a file from a specific service; the temp copy is removed once sent."""
    provider = request.args.get('provider')
    temp_dir = tempfile.mkdtemp(prefix='cloudhub-download-')
    try:
        path, record = _run(app.aggregator.download_file(current_user.id, provider, file_id, temp_dir))
        size = os.path.getsize(path)
    except BaseException:
        shutil.rmtree(temp_dir, ignore_errors=True)
        raise

    response = Response(
        _stream_file(path, temp_dir),
        mimetype=record.get('mime_type') or 'application/octet-stream',
    )
    response.headers['Content-Length'] = str(size)
    _set_attachment(response, record.get('name') or 'download')
    return response


@app.route('/api/storage/files/<path:file_id>', methods=['DELETE'])
@login_required
def api_delete_file(file_id):
    """Delete a file from a specific service."""
    provider = request.args.get('provider')
    record = _run(app.aggregator.delete_file(current_user.id, provider, file_id))
    return jsonify({'message': 'File deleted successfully', 'file': record})


@app.route('/api/storage/stats', methods=['GET'])
@login_required
def api_storage_stats():
    return jsonify(app.aggregator.storage_stats(current_user.id))


@app.route('/api/storage/stats/refresh', methods=['POST'])
@login_required
def api_refresh_stats():
    """Reconcile the usage ledger with each provider's reported quota."""
    return jsonify(_run(app.aggregator.refresh_quotas(current_user.id)))


@app.route('/api/logs', methods=['GET'])
@login_required
def api_logs():
    """Recent log lines from this process."""
    limit = request.args.get('limit', default=100, type=int)
    lines = list(log_buffer)[-max(limit, 0):] if limit else []
    return jsonify({'logs': lines})


def run_web_server(config, account_store, aggregator):
    """
    Run the API with Waitress.

    Args:
        config: Configuration dictionary
        account_store: AccountStore instance
        aggregator: StorageAggregator instance
    """
    create_app(config, account_store, aggregator)

    host, port = config.get('web_host', '0.0.0.0'), config.get('web_port', 8051)
    logger.info(f"Starting CloudHub API on {host}:{port}")

    from waitress import serve
    serve(
        app,
        host=host,
        port=port,
        threads=config.get('web_threads', 4),
        channel_timeout=300,  # 5 minute timeout for large transfers
    )


def install_log_buffer():
    """Capture recent log lines for the /api/logs endpoint."""
    buffer_handler = LogBufferHandler()
    buffer_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    ))
    logging.getLogger().addHandler(buffer_handler)
    logger.info("Log buffer handler registered - live logs enabled")
    return buffer_handler
