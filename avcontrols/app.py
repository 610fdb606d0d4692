#!/usr/bin/env python3
"""
AV Controls - Receiver and IR Transmitter Control Panel
Channel, volume and power control for networked AV receivers, plus a settings page for the device inventory
"""

import os

from flask import Blueprint, Flask, current_app, jsonify, redirect, render_template, request, url_for

from avcontrols import __version__
from avcontrols.config_store import LOG_LEVELS, ConfigStore
from avcontrols.controls import Controls, settings_fields
from avcontrols.device_api import DeviceApiClient
from avcontrols.errors import ConfigValidationError, NotWritableError, StoreError
from avcontrols.logs import configure_logging
from avcontrols.payloads import load_payloads, load_remote_devices
from avcontrols.relay import CommandRelay

STORE_KEY = "avcontrols.store"

bp = Blueprint("avcontrols", __name__)


# =============================================================================
# Application Factory
# =============================================================================

def create_app(overrides=None):
    """Build the Flask app with its config store and file logger."""
    app = Flask(__name__)
    data_dir = os.environ.get("AVCONTROLS_DATA_DIR", os.getcwd())
    app.config['DATA_DIR'] = data_dir
    app.config['CONFIG_FILE'] = os.path.join(data_dir, 'config.json')
    app.config['PAYLOADS_FILE'] = os.path.join(data_dir, 'payloads.txt')
    app.config['REMOTE_DEVICES_FILE'] = os.path.join(data_dir, 'transmitters.txt')
    app.config['LOG_FILE'] = None  # defaults to the snapshot's log_file inside DATA_DIR
    app.config['DEVICE_CLIENT'] = None
    if overrides:
        app.config.update(overrides)

    store = ConfigStore(app.config['CONFIG_FILE'])
    try:
        store.initialize()
    except StoreError as e:
        app.logger.error(f"Could not create default config: {e}")
    app.extensions[STORE_KEY] = store

    _configure_logging(app, store.current)
    app.register_blueprint(bp)
    return app


def _configure_logging(app, snapshot):
    """Point the package logger at the configured file and level."""
    log_file = app.config['LOG_FILE'] or os.path.join(app.config['DATA_DIR'], snapshot.log_file)
    configure_logging(log_file, snapshot.settings.log_level)


def _store():
    return current_app.extensions[STORE_KEY]


def _controls():
    """Wire a Controls instance to the current snapshot."""
    snapshot = _store().current
    client = current_app.config['DEVICE_CLIENT'] or DeviceApiClient(timeout=snapshot.settings.api_timeout)
    payloads = load_payloads(current_app.config['PAYLOADS_FILE'])
    relay = CommandRelay(client, snapshot.volume_models, payloads)
    return Controls(snapshot, relay)


def _request_data():
    """Form fields or JSON body of the current request."""
    if request.is_json:
        data = request.get_json(silent=True)
        return data if isinstance(data, dict) else {}
    return request.form


# =============================================================================
# Control Page
# =============================================================================

@bp.route("/", methods=["GET"])
def index():
    """Serve the control page with one card per receiver."""
    controls = _controls()
    statuses, all_unreachable = controls.receiver_statuses()
    snapshot = controls.snapshot
    return render_template(
        "index.html",
        statuses=statuses,
        all_unreachable=all_unreachable,
        snapshot=snapshot,
        settings=snapshot.settings,
        remote_devices=load_remote_devices(current_app.config['REMOTE_DEVICES_FILE']),
    )


@bp.route("/", methods=["POST"])
def command():
    """Run a power, channel/volume or IR command from the control page."""
    return jsonify(_controls().handle_command(_request_data()))


@bp.route("/api", methods=["GET", "POST", "PUT", "DELETE"])
def ir_api():
    """Relay a named IR action to a transmitter."""
    if request.method != "POST":
        return jsonify({"error": "Invalid request method"}), 405
    body, status = _controls().ir_api(_request_data())
    return jsonify(body), status


@bp.route("/api/power-all", methods=["POST"])
def power_all():
    """Send one power command to every receiver with power control."""
    data = _request_data()
    if not data.get("power_command"):
        return jsonify({"error": "power_command is required"}), 400
    return jsonify(_controls().power_all(data.get("power_command")))


@bp.route("/api/remote-devices")
def remote_devices():
    """List transmitters available to the remote control."""
    devices = load_remote_devices(current_app.config['REMOTE_DEVICES_FILE'])
    return jsonify([{"name": d.name, "url": d.url} for d in devices])


# =============================================================================
# Settings Page
# =============================================================================

def _render_settings(message=None, status=200):
    store = _store()
    try:
        store.check_writable()
        writable_error = None
    except NotWritableError as e:
        writable_error = e
    return render_template(
        "settings.html",
        snapshot=store.current,
        settings=store.current.settings,
        log_levels=LOG_LEVELS,
        backups=store.list_backups(),
        writable_error=writable_error,
        message=message,
    ), status


@bp.route("/settings", methods=["GET"])
def settings_page():
    """Serve the settings editor."""
    message = None
    if request.args.get("restored"):
        message = {"type": "success", "text": "Configuration restored successfully from backup."}
    return _render_settings(message)


@bp.route("/settings", methods=["POST"])
def save_settings():
    """Validate and commit one section (or all) of the settings form."""
    store = _store()
    section = request.form.get("section", "all")
    try:
        staged = store.validate_and_stage(section, settings_fields(request.form))
        store.commit(staged)
    except (ConfigValidationError, StoreError) as e:
        current_app.logger.debug(f"Settings update rejected: {e}")
        return _render_settings({"type": "error", "text": f"Error updating configuration: {e}"}, 400)

    _configure_logging(current_app, store.current)
    return _render_settings({"type": "success", "text": "Configuration updated successfully"})


@bp.route("/settings/restore", methods=["POST"])
def restore_settings():
    """Restore the live config from a named backup."""
    store = _store()
    try:
        store.restore(request.form.get("backup_file", ""))
    except StoreError as e:
        return _render_settings({"type": "error", "text": f"Error restoring backup: {e}"}, 400)

    _configure_logging(current_app, store.current)
    return redirect(url_for("avcontrols.settings_page", restored=1))


@bp.route("/api/health")
def health_check():
    """Health check endpoint."""
    store = _store()
    try:
        store.check_writable()
        writable = True
    except NotWritableError:
        writable = False
    return jsonify({
        "status": "healthy",
        "receivers": len(store.current.receivers),
        "transmitters": len(store.current.transmitters),
        "config_file": store.path,
        "config_writable": writable,
        "version": __version__
    })


# =============================================================================
# Main Entry Point
# =============================================================================

def main():
    app = create_app()
    debug = os.environ.get("FLASK_DEBUG", "0") == "1"
    port = int(os.environ.get("AVCONTROLS_PORT", "5000"))

    print("\n" + "=" * 60)
    print("  AV Controls - Receiver Control Panel")
    print("=" * 60)
    print(f"  Config file: {app.config['CONFIG_FILE']}")
    print(f"  Payloads file: {app.config['PAYLOADS_FILE']}")
    print(f"  Receivers: {len(app.extensions[STORE_KEY].current.receivers)}")
    print(f"  Debug mode: {debug}")
    print("=" * 60)
    print(f"  Starting server at http://localhost:{port}")
    print("=" * 60 + "\n")

    app.run(host="0.0.0.0", port=port, debug=debug)


if __name__ == "__main__":
    main()
